"""Pydantic models for resolved deployment options.

These are built once by the resolver and never mutated afterwards.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from appdeployer.config import DOCKERHUB


class Frozen(BaseModel):
    """Immutable option value."""

    model_config = ConfigDict(frozen=True)


class ProbeType(str, Enum):
    """Supported container probe handlers."""

    HTTP_GET = "HTTPGet"
    TCP_SOCKET = "TCPSocket"
    EXEC = "Exec"


class AccessMode(str, Enum):
    """Persistent volume access modes."""

    READ_WRITE_ONCE = "ReadWriteOnce"
    READ_ONLY_MANY = "ReadOnlyMany"
    READ_WRITE_MANY = "ReadWriteMany"


# Image Models

class BuildOptions(Frozen):
    """Everything needed to build and push the app image."""

    app_dir: Path = Field(..., description="Build context directory")
    dockerfile: Path = Field(..., description="Absolute path to the Dockerfile")
    docker_config: Path = Field(..., description="Docker client configuration file")
    registry: str = Field(default=DOCKERHUB, description="Registry URL")
    username: str = Field(default="", description="Registry username")
    password: str = Field(default="", description="Registry password")
    repository: str = Field(..., description="Image repository")
    tag: str = Field(default="latest", description="Image tag")
    timeout: int = Field(default=600, description="Docker daemon call timeout in seconds")

    @property
    def is_dockerhub(self) -> bool:
        return self.registry == DOCKERHUB

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @property
    def registry_host(self) -> str:
        """Registry host without scheme or path, e.g. ``index.docker.io``."""
        return self.registry.split("://", 1)[-1].split("/", 1)[0]

    @property
    def image_name(self) -> str:
        """Image name without tag, prefixed with the registry host off Docker Hub."""
        if self.is_dockerhub or self.repository.startswith(f"{self.registry_host}/"):
            return self.repository
        return f"{self.registry_host}/{self.repository}"

    @property
    def image(self) -> str:
        """Fully qualified image reference used by the deployment."""
        return f"{self.image_name}:{self.tag}"


# Cluster Models

class IngressOptions(Frozen):
    host: str
    tls: bool = False
    self_signed: bool = False
    self_signed_years: int = 1
    crt_path: Optional[Path] = None
    key_path: Optional[Path] = None


class ServiceOptions(Frozen):
    port: int = 8000
    target_port: int = 8000


class RollingUpdate(Frozen):
    max_surge: str = "1"
    max_unavailable: str = "0"


class ResourceQuota(Frozen):
    """Container resource requests and limits; blank values are left unset."""

    cpu_request: str = ""
    cpu_limit: str = ""
    memory_request: str = ""
    memory_limit: str = ""


class ProbeOptions(Frozen):
    enabled: bool = False
    type: ProbeType = ProbeType.HTTP_GET
    path: str = "/"
    scheme: str = "HTTP"
    command: str = ""
    initial_delay_seconds: int = 0
    timeout_seconds: int = 1
    period_seconds: int = 10
    success_threshold: int = 1
    failure_threshold: int = 3


class VolumeMount(Frozen):
    enabled: bool = False
    mount_path: str = "/app/data"


class DeploymentOptions(Frozen):
    replicas: int = 1
    port: int = 8000
    rolling_update: RollingUpdate = Field(default_factory=RollingUpdate)
    quota: ResourceQuota = Field(default_factory=ResourceQuota)
    env: Dict[str, str] = Field(default_factory=dict, description="Container environment variables")
    liveness_probe: ProbeOptions = Field(default_factory=ProbeOptions)
    readiness_probe: ProbeOptions = Field(default_factory=ProbeOptions)
    volume_mount: VolumeMount = Field(default_factory=VolumeMount)


class HPAOptions(Frozen):
    enabled: bool = False
    min_replicas: int = 1
    max_replicas: int = 10
    cpu_rate: int = 50


class PVCOptions(Frozen):
    access_mode: AccessMode = AccessMode.READ_WRITE_ONCE
    storage_class_name: str = "openebs-hostpath"
    storage_size: str = "1G"


class ClusterTarget(Frozen):
    """Where and how the app runs on the cluster."""

    kubeconfig: Path
    namespace: str
    timeout: int = Field(default=30, description="Kubernetes API call timeout in seconds")
    ingress: IngressOptions
    service: ServiceOptions = Field(default_factory=ServiceOptions)
    deployment: DeploymentOptions = Field(default_factory=DeploymentOptions)
    hpa: HPAOptions = Field(default_factory=HPAOptions)
    pvc: PVCOptions = Field(default_factory=PVCOptions)


class DeployPlan(Frozen):
    """Fully resolved input of a single deployment run."""

    app_name: str
    git_pull: bool = True
    build: BuildOptions
    cluster: ClusterTarget

    @property
    def pull_secret_name(self) -> str:
        return f"docker-{self.app_name}"

    @property
    def tls_secret_name(self) -> str:
        return f"tls-{self.app_name}"
