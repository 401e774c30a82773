"""CLI interface for appdeployer."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

import click
from rich.logging import RichHandler
from rich.panel import Panel

from appdeployer import __version__
from appdeployer.config import iter_setting_fields, load_settings, nest_overrides
from appdeployer.core.errors import AppDeployerError
from appdeployer.core.resolver import resolve
from appdeployer.deploy import console, deploy_app

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

# click parameter name -> settings key path, e.g.
# "kube_ingress_tls" -> ("kube", "ingress", "tls")
SETTING_FLAGS: Dict[str, Tuple[str, ...]] = {
    "_".join(path): path for path, _ in iter_setting_fields()
}


def settings_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add one ``--section.key`` option per settings field.

    Options default to None so that only values given on the command line
    override the environment, config file and field defaults.
    """
    for path, field in reversed(list(iter_setting_fields())):
        flag = "--" + ".".join(path)
        param = "_".join(path)
        annotation = field.annotation
        show_default = False if field.default in ("", None) else str(field.default)

        if annotation is bool:
            # "--kube.ingress.tls" alone means true; "--kube.ingress.tls false" is allowed
            option = click.option(
                flag,
                param,
                type=click.BOOL,
                is_flag=False,
                flag_value="true",
                default=None,
                show_default=show_default,
                help=field.description,
            )
        else:
            option = click.option(
                flag,
                param,
                type=click.INT if annotation is int else click.STRING,
                default=None,
                show_default=show_default,
                help=field.description,
            )
        func = option(func)
    return func


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=False, show_path=False)],
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Logging level",
    show_default=True,
)
def main(log_level: str) -> None:
    """appdeployer - Build an app into an image and run it on Kubernetes."""
    setup_logging(log_level.upper())


@main.command()
@click.option(
    "--appname",
    default=None,
    envvar="APPDEPLOYER_APPNAME",
    help="Application name, used to name every resource. Defaults to the appdir name",
)
@click.option(
    "--appdir",
    default=".",
    envvar="APPDEPLOYER_APPDIR",
    help="Application directory, used as the image build context",
    show_default=True,
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="APPDEPLOYER_CONFIG",
    help="YAML config file (uses ~/.appdeployer/config.yaml if it exists)",
)
@click.option(
    "--env",
    "-e",
    "env_vars",
    multiple=True,
    help="Set environment variables in the form of key=value (can specify multiple)",
)
@settings_options
def kube(
    appname: str | None,
    appdir: str,
    config_file: Path | None,
    env_vars: tuple[str, ...],
    **flags: Any,
) -> None:
    """Deploy app to kubernetes cluster."""
    overrides = nest_overrides(
        {SETTING_FLAGS[param]: value for param, value in flags.items() if value is not None}
    )

    try:
        settings = load_settings(config_file=config_file, overrides=overrides)
        plan = resolve(settings, app_dir=appdir, app_name=appname, env_vars=env_vars)

        console.print(
            Panel.fit(
                f"[bold cyan]Deploying {plan.app_name} to namespace {plan.cluster.namespace}[/bold cyan]",
                border_style="cyan",
            )
        )
        deploy_app(plan)
    except AppDeployerError as e:
        console.print(f"[bold red]✗[/bold red] Deployment failed: {e}")
        raise click.Abort()

    console.print("\n[bold green]✓[/bold green] Deployment successful!")
    console.print(f"\nYour app is served at {'https' if plan.cluster.ingress.tls else 'http'}://{plan.cluster.ingress.host}")


if __name__ == "__main__":
    main()
