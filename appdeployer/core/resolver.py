"""Option resolver: turns layered settings into a validated deploy plan."""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Optional

from appdeployer.config import DOCKERHUB, DockerSettings, KubeSettings, ProbeSettings, Settings
from appdeployer.core.certs import load_certificate_pair
from appdeployer.core.errors import ConfigurationError
from appdeployer.core.models import (
    AccessMode,
    BuildOptions,
    ClusterTarget,
    DeploymentOptions,
    DeployPlan,
    HPAOptions,
    IngressOptions,
    ProbeOptions,
    ProbeType,
    PVCOptions,
    ResourceQuota,
    RollingUpdate,
    ServiceOptions,
    VolumeMount,
)

logger = logging.getLogger(__name__)

# Kubernetes object names (RFC 1123 label)
APP_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
ENV_NAME_PATTERN = re.compile(r"^[-._a-zA-Z][-._a-zA-Z0-9]*$")


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def expand_path(value: str, base: Optional[Path] = None) -> Path:
    """Expand ``~`` and make relative paths absolute against ``base``."""
    path = Path(value).expanduser()
    if not path.is_absolute() and base is not None:
        path = base / path
    return path.resolve()


def resolve(
    settings: Settings,
    app_dir: str = ".",
    app_name: Optional[str] = None,
    env_vars: Iterable[str] = (),
) -> DeployPlan:
    """Derive defaults and validate cross-field constraints.

    Args:
        settings: Merged settings from flags, environment, config file and defaults
        app_dir: Application directory, used as the image build context
        app_name: Application name. Defaults to the app directory name
        env_vars: Container environment variables as ``KEY=VALUE`` strings

    Returns:
        Immutable plan for a deployment run

    Raises:
        ConfigurationError: On the first missing file, blank required value or
            inconsistent combination of options
    """
    app_path = expand_path(app_dir)
    if not app_path.is_dir():
        raise ConfigurationError(f"appdir {app_path} does not exist")

    name = app_name if not is_blank(app_name) else app_path.name
    name = name.strip()
    if not APP_NAME_PATTERN.match(name) or len(name) > 63:
        raise ConfigurationError(
            f"appname '{name}' must consist of lowercase alphanumeric characters or '-', "
            "start and end with an alphanumeric character and be at most 63 characters"
        )

    build = resolve_build_options(settings.docker, app_path, name)
    cluster = resolve_cluster_target(settings.kube, name, parse_env_vars(env_vars))

    plan = DeployPlan(app_name=name, git_pull=settings.git.pull, build=build, cluster=cluster)
    logger.debug("Resolved deploy plan: %s", plan.model_dump(exclude={"build": {"password"}}))
    return plan


def resolve_build_options(docker: DockerSettings, app_path: Path, app_name: str) -> BuildOptions:
    docker_config = expand_path(docker.dockerconfig)
    if not docker_config.is_file():
        raise ConfigurationError(f"dockerconfig {docker_config} does not exist")

    dockerfile = expand_path(docker.dockerfile, base=app_path)
    if not dockerfile.is_file():
        raise ConfigurationError(f"dockerfile {dockerfile} does not exist")

    repository = docker.repository.strip()
    if not repository and docker.registry == DOCKERHUB:
        if is_blank(docker.username):
            raise ConfigurationError("docker.username is required")
        repository = f"{docker.username.strip()}/{app_name}"
    if not repository:
        raise ConfigurationError(f"docker.repository is required for registry {docker.registry}")

    if is_blank(docker.tag):
        raise ConfigurationError("docker.tag must not be blank")

    return BuildOptions(
        app_dir=app_path,
        dockerfile=dockerfile,
        docker_config=docker_config,
        registry=docker.registry,
        username=docker.username.strip(),
        password=docker.password,
        repository=repository,
        tag=docker.tag.strip(),
        timeout=docker.timeout,
    )


def resolve_cluster_target(kube: KubeSettings, app_name: str, env: Dict[str, str]) -> ClusterTarget:
    kubeconfig = expand_path(kube.kubeconfig)
    if not kubeconfig.is_file():
        raise ConfigurationError(f"kubeconfig {kubeconfig} does not exist")

    namespace = app_name if is_blank(kube.namespace) else kube.namespace.strip()
    deployment = kube.deployment

    return ClusterTarget(
        kubeconfig=kubeconfig,
        namespace=namespace,
        timeout=kube.timeout,
        ingress=resolve_ingress(kube, app_name),
        service=ServiceOptions(port=kube.service.port, target_port=deployment.port),
        deployment=DeploymentOptions(
            replicas=deployment.replicas,
            port=deployment.port,
            rolling_update=RollingUpdate(
                max_surge=deployment.rolling_update.max_surge.strip(),
                max_unavailable=deployment.rolling_update.max_unavailable.strip(),
            ),
            quota=ResourceQuota(
                cpu_request=deployment.quota.cpu_request.strip(),
                cpu_limit=deployment.quota.cpu_limit.strip(),
                memory_request=deployment.quota.mem_request.strip(),
                memory_limit=deployment.quota.mem_limit.strip(),
            ),
            env=env,
            liveness_probe=resolve_probe(deployment.liveness_probe, "livenessprobe"),
            readiness_probe=resolve_probe(deployment.readiness_probe, "readinessprobe"),
            volume_mount=VolumeMount(
                enabled=deployment.volume_mount.enabled,
                mount_path=deployment.volume_mount.mount_path,
            ),
        ),
        hpa=resolve_hpa(kube),
        pvc=resolve_pvc(kube),
    )


def resolve_ingress(kube: KubeSettings, app_name: str) -> IngressOptions:
    ingress = kube.ingress
    host = f"{app_name}.com" if is_blank(ingress.host) else ingress.host.strip()

    crt_path = None if is_blank(ingress.crt_path) else expand_path(ingress.crt_path)
    key_path = None if is_blank(ingress.key_path) else expand_path(ingress.key_path)

    if ingress.tls and not ingress.self_signed:
        if crt_path is None:
            raise ConfigurationError("kube.ingress.crtpath is required when TLS is enabled without self-signed")
        if key_path is None:
            raise ConfigurationError("kube.ingress.keypath is required when TLS is enabled without self-signed")
        load_certificate_pair(crt_path, key_path)

    if ingress.tls and ingress.self_signed and ingress.self_signed_years < 1:
        raise ConfigurationError("kube.ingress.selfsignedyears must be at least 1")

    return IngressOptions(
        host=host,
        tls=ingress.tls,
        self_signed=ingress.self_signed,
        self_signed_years=ingress.self_signed_years,
        crt_path=crt_path,
        key_path=key_path,
    )


def resolve_probe(probe: ProbeSettings, flag: str) -> ProbeOptions:
    probe_type = next((t for t in ProbeType if t.value.lower() == probe.type.strip().lower()), None)
    if probe_type is None:
        choices = ", ".join(t.value for t in ProbeType)
        raise ConfigurationError(f"kube.deployment.{flag}.type must be one of {choices}, got '{probe.type}'")

    if probe.enabled and probe_type is ProbeType.EXEC and is_blank(probe.command):
        raise ConfigurationError(f"kube.deployment.{flag}.command is required for an Exec probe")

    scheme = probe.scheme.strip().upper()
    if scheme not in ("HTTP", "HTTPS"):
        raise ConfigurationError(f"kube.deployment.{flag}.schema must be http or https, got '{probe.scheme}'")

    return ProbeOptions(
        enabled=probe.enabled,
        type=probe_type,
        path=probe.path,
        scheme=scheme,
        command=probe.command.strip(),
        initial_delay_seconds=probe.initial_delay_seconds,
        timeout_seconds=probe.timeout_seconds,
        period_seconds=probe.period_seconds,
        success_threshold=probe.success_threshold,
        failure_threshold=probe.failure_threshold,
    )


def resolve_hpa(kube: KubeSettings) -> HPAOptions:
    hpa = kube.hpa
    if hpa.enabled:
        if hpa.min_replicas < 1:
            raise ConfigurationError("kube.hpa.minreplicas must be at least 1")
        if hpa.min_replicas > hpa.max_replicas:
            raise ConfigurationError(
                f"kube.hpa.minreplicas ({hpa.min_replicas}) exceeds kube.hpa.maxreplicas ({hpa.max_replicas})"
            )
    return HPAOptions(
        enabled=hpa.enabled,
        min_replicas=hpa.min_replicas,
        max_replicas=hpa.max_replicas,
        cpu_rate=hpa.cpu_rate,
    )


def resolve_pvc(kube: KubeSettings) -> PVCOptions:
    pvc = kube.pvc
    access_mode = next((m for m in AccessMode if m.value.lower() == pvc.access_mode.strip().lower()), None)
    if access_mode is None:
        choices = ", ".join(m.value for m in AccessMode)
        raise ConfigurationError(f"kube.pvc.accessmode must be one of {choices}, got '{pvc.access_mode}'")
    return PVCOptions(
        access_mode=access_mode,
        storage_class_name=pvc.storage_class_name.strip(),
        storage_size=pvc.storage_size.strip(),
    )


def parse_env_vars(env_vars: Iterable[str]) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` strings, keeping their order. Later keys win."""
    env: Dict[str, str] = {}
    for item in env_vars:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"environment variable '{item}' must be in the form key=value")
        if not ENV_NAME_PATTERN.match(key):
            raise ConfigurationError(f"'{key}' is not a valid environment variable name")
        env[key] = value
    return env
