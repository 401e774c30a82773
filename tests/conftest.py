"""Shared fixtures for appdeployer tests."""

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes.client.rest import ApiException

from appdeployer.config import Settings, load_settings, nest_overrides
from appdeployer.core.errors import ImageError
from appdeployer.core.models import BuildOptions, DeployPlan
from appdeployer.core.reconciler import Reconciler, resource_kinds
from appdeployer.core.resolver import resolve

VERBS = ("create", "read", "replace", "delete")


class FakeKubeApi:
    """In-memory stand-in for the typed Kubernetes API clients.

    Answers ``<verb>_namespaced_<resource>`` and ``<verb>_<resource>`` calls
    the way the API server does: 409 on creating an existing object, 404 on
    touching a missing one, 409 on replacing with a stale resourceVersion.
    """

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, Optional[str], str], Any] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.failures: Dict[Tuple[str, str], int] = {}

    def get(self, resource: str, name: str, namespace: Optional[str] = None) -> Any:
        return self.objects.get((resource, namespace, name))

    def fail(self, verb: str, resource: str, status: int) -> None:
        self.failures[(verb, resource)] = status

    def __getattr__(self, attr: str) -> Callable[..., Any]:
        verb, _, resource = attr.partition("_")
        if verb not in VERBS or not resource:
            raise AttributeError(attr)
        if resource.startswith("namespaced_"):
            resource = resource[len("namespaced_"):]

        def call(name: Optional[str] = None, namespace: Optional[str] = None, body: Any = None, **kwargs: Any) -> Any:
            self.calls.append((verb, resource, kwargs))
            if (verb, resource) in self.failures:
                raise ApiException(status=self.failures[(verb, resource)], reason="Injected failure")

            key = (resource, namespace, name or body.metadata.name)
            stored = self.objects.get(key)

            if verb == "create":
                if stored is not None:
                    raise ApiException(status=409, reason="AlreadyExists")
                body.metadata.resource_version = "1"
                self.objects[key] = body
                return body
            if stored is None:
                raise ApiException(status=404, reason="NotFound")
            if verb == "read":
                return stored
            if verb == "replace":
                if body.metadata.resource_version != stored.metadata.resource_version:
                    raise ApiException(status=409, reason="Conflict")
                body.metadata.resource_version = str(int(stored.metadata.resource_version) + 1)
                self.objects[key] = body
                return body
            del self.objects[key]
            return None

        return call


class FakeClientManager:
    """K8sClientManager double handing out one shared FakeKubeApi."""

    def __init__(self, api: FakeKubeApi) -> None:
        self.api = api

    def get_core_v1_api(self) -> FakeKubeApi:
        return self.api

    def get_apps_v1_api(self) -> FakeKubeApi:
        return self.api

    def get_networking_v1_api(self) -> FakeKubeApi:
        return self.api

    def get_autoscaling_v2_api(self) -> FakeKubeApi:
        return self.api


class FakeDockerService:
    """DockerService double recording build and push calls."""

    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.fail_on = fail_on
        self.calls: List[str] = []
        self.closed = False

    def __enter__(self) -> "FakeDockerService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def build_image(self, options: BuildOptions) -> str:
        self.calls.append("build")
        if self.fail_on == "build":
            raise ImageError(f"Failed to build image {options.image}: boom")
        return options.image

    def push_image(self, options: BuildOptions) -> str:
        self.calls.append("push")
        if self.fail_on == "push":
            raise ImageError(f"Failed to push image {options.image}: denied")
        return options.image

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's home directory and APPDEPLOYER_* variables out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))

    for key in list(os.environ):
        if key.upper().startswith("APPDEPLOYER_"):
            monkeypatch.delenv(key)


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """Application directory named "demo" with a Dockerfile."""
    path = tmp_path / "demo"
    path.mkdir()
    (path / "Dockerfile").write_text("FROM scratch\n")
    return path


@pytest.fixture
def docker_config(tmp_path: Path) -> Path:
    path = tmp_path / "docker-config.json"
    path.write_text('{"auths": {"https://index.docker.io/v1/": {"auth": "YWxpY2U6c2VjcmV0"}}}')
    return path


@pytest.fixture
def kubeconfig(tmp_path: Path) -> Path:
    path = tmp_path / "kubeconfig"
    path.write_text("apiVersion: v1\nkind: Config\n")
    return path


@pytest.fixture
def make_settings(docker_config: Path, kubeconfig: Path) -> Callable[..., Settings]:
    """Build settings from dotted keys, e.g. ``make_settings(**{"kube.hpa.enabled": True})``."""

    def make(**values: Any) -> Settings:
        flat = {
            "docker.dockerconfig": str(docker_config),
            "docker.username": "alice",
            "git.pull": False,
            "kube.kubeconfig": str(kubeconfig),
        }
        flat.update(values)
        return load_settings(overrides=nest_overrides({tuple(k.split(".")): v for k, v in flat.items()}))

    return make


@pytest.fixture
def make_plan(app_dir: Path, make_settings: Callable[..., Settings]) -> Callable[..., DeployPlan]:
    """Resolve a plan for the "demo" app from dotted keys."""

    def make(env_vars: Tuple[str, ...] = (), **values: Any) -> DeployPlan:
        return resolve(make_settings(**values), app_dir=str(app_dir), env_vars=env_vars)

    return make


@pytest.fixture
def fake_api() -> FakeKubeApi:
    return FakeKubeApi()


@pytest.fixture
def reconciler(fake_api: FakeKubeApi) -> Reconciler:
    return Reconciler(resource_kinds(FakeClientManager(fake_api)), namespace="demo", timeout=5)
