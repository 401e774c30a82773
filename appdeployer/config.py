"""Layered configuration for appdeployer.

Values are looked up, highest priority first, in:

1. command-line overrides (passed as init kwargs),
2. environment variables (``APPDEPLOYER_`` prefix, ``__`` between levels,
   e.g. ``APPDEPLOYER_DOCKER__USERNAME``),
3. the YAML config file,
4. the defaults declared on the fields below.

Field aliases match the segments of the dotted command-line flags, so
``--kube.ingress.selfsignedyears`` maps to ``kube.ingress.self_signed_years``
and the config file uses the same keys as the flags.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from appdeployer.core.errors import ConfigurationError

DOCKERHUB = "https://index.docker.io/v1/"
DEFAULT_CONFIG_FILE = Path("~/.appdeployer/config.yaml")


class Section(BaseModel):
    """Base for nested settings sections."""

    model_config = ConfigDict(populate_by_name=True)


# Docker

class DockerSettings(Section):
    """Image build and registry settings."""

    dockerconfig: str = Field(
        default="~/.docker/config.json", description="Path to docker configuration"
    )
    dockerfile: str = Field(
        default="./Dockerfile",
        description="Path to Dockerfile for building image, relative to appdir",
    )
    registry: str = Field(default=DOCKERHUB, description="URL for docker registry")
    username: str = Field(default="", description="Username for docker registry")
    password: str = Field(default="", description="Password for docker registry")
    repository: str = Field(
        default="",
        description="Repository for docker registry. Defaults to username/appname on Docker Hub",
    )
    tag: str = Field(default="latest", description="Tag for docker registry")
    timeout: int = Field(
        default=600, description="Timeout in seconds for calls to the docker daemon"
    )


# Git

class GitSettings(Section):
    """Source update settings."""

    pull: bool = Field(
        default=True, description="Pull the latest sources before building when appdir is a git repository"
    )


# Kubernetes

class IngressSettings(Section):
    host: str = Field(default="", description="Host for app ingress. Defaults to appname.com")
    tls: bool = Field(default=False, description="Enable or disable TLS for app host")
    self_signed: bool = Field(
        default=False, alias="selfsigned", description="Enable or disable self-signed certificate"
    )
    self_signed_years: int = Field(
        default=1, alias="selfsignedyears", description="Validity of self-signed certificate in years"
    )
    crt_path: str = Field(
        default="", alias="crtpath", description="Path to .crt file (PEM format) for non self-signed certificate"
    )
    key_path: str = Field(
        default="", alias="keypath", description="Path to .key file (PEM format) for non self-signed certificate"
    )


class ServiceSettings(Section):
    port: int = Field(default=8000, description="Port for app service")


class RollingUpdateSettings(Section):
    max_surge: str = Field(
        default="1", alias="maxsurge", description="MaxSurge for rolling update of app pods"
    )
    max_unavailable: str = Field(
        default="0", alias="maxunavailable", description="MaxUnavailable for rolling update of app pods"
    )


class QuotaSettings(Section):
    cpu_limit: str = Field(default="", alias="cpulimit", description="CPU limit for the app container")
    mem_limit: str = Field(default="", alias="memlimit", description="Memory limit for the app container")
    cpu_request: str = Field(default="", alias="cpurequest", description="CPU request for the app container")
    mem_request: str = Field(default="", alias="memrequest", description="Memory request for the app container")


class ProbeSettings(Section):
    """Liveness or readiness probe of the app container."""

    enabled: bool = Field(default=False, description="Enable or disable the probe")
    type: str = Field(default="HTTPGet", description="Probe type: HTTPGet, TCPSocket or Exec")
    path: str = Field(default="/", description="Probe path (HTTPGet)")
    scheme: str = Field(default="http", alias="schema", description="Probe schema, http or https (HTTPGet)")
    command: str = Field(default="", description="Probe command (Exec)")
    initial_delay_seconds: int = Field(
        default=0, alias="initialdelayseconds", description="Initial delay seconds of the probe"
    )
    timeout_seconds: int = Field(default=1, alias="timeoutseconds", description="Timeout seconds of the probe")
    period_seconds: int = Field(default=10, alias="periodseconds", description="Period seconds of the probe")
    success_threshold: int = Field(
        default=1, alias="successthreshold", description="Success threshold of the probe"
    )
    failure_threshold: int = Field(
        default=3, alias="failurethreshold", description="Failure threshold of the probe"
    )


class VolumeMountSettings(Section):
    enabled: bool = Field(default=False, description="Enable or disable a persistent volume mount for app pods")
    mount_path: str = Field(default="/app/data", alias="mountpath", description="Path of the volume mount")


class DeploymentSettings(Section):
    replicas: int = Field(default=1, description="Number of app pods")
    port: int = Field(default=8000, description="Container port for each app pod")
    rolling_update: RollingUpdateSettings = Field(default_factory=RollingUpdateSettings, alias="rollingupdate")
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    liveness_probe: ProbeSettings = Field(default_factory=ProbeSettings, alias="livenessprobe")
    readiness_probe: ProbeSettings = Field(default_factory=ProbeSettings, alias="readinessprobe")
    volume_mount: VolumeMountSettings = Field(default_factory=VolumeMountSettings, alias="volumemount")


class HPASettings(Section):
    enabled: bool = Field(default=False, description="Enable or disable the horizontal pod autoscaler")
    min_replicas: int = Field(default=1, alias="minreplicas", description="Minimum number of pods for the autoscaler")
    max_replicas: int = Field(default=10, alias="maxreplicas", description="Maximum number of pods for the autoscaler")
    cpu_rate: int = Field(default=50, alias="cpurate", description="Target average CPU utilization in percent")


class PVCSettings(Section):
    access_mode: str = Field(
        default="readwriteonce",
        alias="accessmode",
        description="Access mode of the volume: ReadWriteOnce, ReadOnlyMany or ReadWriteMany",
    )
    storage_class_name: str = Field(
        default="openebs-hostpath", alias="storageclassname", description="Storage class of the volume"
    )
    storage_size: str = Field(default="1G", alias="storagesize", description="Size of the volume")


class KubeSettings(Section):
    kubeconfig: str = Field(default="~/.kube/config", description="Path to kubernetes configuration")
    namespace: str = Field(default="", description="Namespace for app resources. Defaults to appname")
    timeout: int = Field(default=30, description="Timeout in seconds for each Kubernetes API call")
    ingress: IngressSettings = Field(default_factory=IngressSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    hpa: HPASettings = Field(default_factory=HPASettings)
    pvc: PVCSettings = Field(default_factory=PVCSettings)


class Settings(BaseSettings):
    """Raw deployment settings before defaults are derived and validated."""

    docker: DockerSettings = Field(default_factory=DockerSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    kube: KubeSettings = Field(default_factory=KubeSettings)

    model_config = SettingsConfigDict(
        env_prefix="APPDEPLOYER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))


def iter_setting_fields(
    model: Type[BaseModel] = Settings, prefix: Tuple[str, ...] = ()
) -> Iterator[Tuple[Tuple[str, ...], FieldInfo]]:
    """Walk the leaf fields of a settings model.

    Yields:
        (key path, field info) pairs, where the key path uses field aliases,
        e.g. ``("kube", "ingress", "selfsignedyears")``
    """
    for name, field in model.model_fields.items():
        key = prefix + (field.alias or name,)
        annotation = field.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            yield from iter_setting_fields(annotation, key)
        else:
            yield key, field


def nest_overrides(flat: Dict[Tuple[str, ...], Any]) -> Dict[str, Any]:
    """Turn ``{("kube", "hpa", "enabled"): True}`` into ``{"kube": {"hpa": {"enabled": True}}}``."""
    nested: Dict[str, Any] = {}
    for path, value in flat.items():
        node = nested
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = value
    return nested


def load_settings(
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Load settings from every configuration layer.

    Args:
        config_file: YAML config file. When omitted, ``~/.appdeployer/config.yaml``
            is used if it exists.
        overrides: Nested command-line values, applied on top of everything else

    Returns:
        Merged settings

    Raises:
        ConfigurationError: If the config file is missing, is not valid YAML,
            or a value is invalid
    """
    if config_file is None:
        default_file = DEFAULT_CONFIG_FILE.expanduser()
        config_file = default_file if default_file.is_file() else None
    else:
        config_file = Path(config_file).expanduser()
        if not config_file.is_file():
            raise ConfigurationError(f"config file {config_file} does not exist")

    class FileSettings(Settings):
        model_config = SettingsConfigDict(yaml_file=config_file)

    try:
        return FileSettings(**(overrides or {}))
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"config file {config_file} is not valid YAML: {e}") from e
