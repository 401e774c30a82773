"""End-to-end deployment runs against in-memory fakes."""

from typing import Callable

import pytest

from appdeployer import deploy
from appdeployer.core.errors import ImageError, ReconcileError
from appdeployer.core.models import DeployPlan
from appdeployer.core.reconciler import (
    DEPLOYMENT,
    HPA,
    INGRESS,
    NAMESPACE,
    PULL_SECRET,
    PVC,
    SERVICE,
    SERVICE_ACCOUNT,
    TLS_SECRET,
    Outcome,
    Reconciler,
)
from appdeployer.deploy import deploy_app
from conftest import FakeClientManager, FakeDockerService, FakeKubeApi

PlanFactory = Callable[..., DeployPlan]

ALL_FEATURES = {
    "kube.ingress.tls": True,
    "kube.ingress.selfsigned": True,
    "kube.deployment.volumemount.enabled": True,
    "kube.hpa.enabled": True,
}


def test_first_run_creates_everything(
    make_plan: PlanFactory, reconciler: Reconciler, fake_api: FakeKubeApi
) -> None:
    docker_service = FakeDockerService()

    outcomes = dict(deploy_app(make_plan(**ALL_FEATURES), docker_service=docker_service, reconciler=reconciler))

    assert docker_service.calls == ["build", "push"]
    assert docker_service.closed
    assert set(outcomes.values()) == {Outcome.CREATED}
    assert fake_api.get("namespace", "demo") is not None
    assert fake_api.get("secret", "docker-demo", namespace="demo") is not None
    assert fake_api.get("secret", "tls-demo", namespace="demo") is not None
    assert fake_api.get("horizontal_pod_autoscaler", "demo", namespace="demo") is not None


def test_disabled_features_are_absent(make_plan: PlanFactory, reconciler: Reconciler) -> None:
    outcomes = dict(deploy_app(make_plan(), docker_service=FakeDockerService(), reconciler=reconciler))

    assert outcomes == {
        NAMESPACE: Outcome.CREATED,
        PULL_SECRET: Outcome.CREATED,
        SERVICE_ACCOUNT: Outcome.CREATED,
        TLS_SECRET: Outcome.ABSENT,
        PVC: Outcome.ABSENT,
        DEPLOYMENT: Outcome.CREATED,
        SERVICE: Outcome.CREATED,
        INGRESS: Outcome.CREATED,
        HPA: Outcome.ABSENT,
    }


def test_rerun_updates_in_place(make_plan: PlanFactory, reconciler: Reconciler) -> None:
    """Test that a second run replaces every resource except the PVC."""
    plan = make_plan(**ALL_FEATURES)
    deploy_app(plan, docker_service=FakeDockerService(), reconciler=reconciler)

    outcomes = dict(deploy_app(plan, docker_service=FakeDockerService(), reconciler=reconciler))

    assert outcomes.pop(PVC) is Outcome.UNCHANGED
    assert set(outcomes.values()) == {Outcome.UPDATED}


def test_disabling_features_deletes_their_resources(
    make_plan: PlanFactory, reconciler: Reconciler, fake_api: FakeKubeApi
) -> None:
    deploy_app(make_plan(**ALL_FEATURES), docker_service=FakeDockerService(), reconciler=reconciler)

    outcomes = dict(deploy_app(make_plan(), docker_service=FakeDockerService(), reconciler=reconciler))

    assert outcomes[TLS_SECRET] is Outcome.DELETED
    assert outcomes[PVC] is Outcome.DELETED
    assert outcomes[HPA] is Outcome.DELETED
    assert fake_api.get("persistent_volume_claim", "demo", namespace="demo") is None
    assert fake_api.get("horizontal_pod_autoscaler", "demo", namespace="demo") is None
    assert fake_api.get("deployment", "demo", namespace="demo").spec.template.spec.volumes is None


def test_image_failure_stops_before_cluster(
    make_plan: PlanFactory, reconciler: Reconciler, fake_api: FakeKubeApi
) -> None:
    docker_service = FakeDockerService(fail_on="push")

    with pytest.raises(ImageError, match="denied"):
        deploy_app(make_plan(), docker_service=docker_service, reconciler=reconciler)

    assert docker_service.closed
    assert fake_api.calls == []


def test_reconcile_failure_stops_without_rollback(
    make_plan: PlanFactory, reconciler: Reconciler, fake_api: FakeKubeApi
) -> None:
    """Test that resources applied before a failure are left in place."""
    fake_api.fail("create", "deployment", 403)

    with pytest.raises(ReconcileError, match="deployment"):
        deploy_app(make_plan(), docker_service=FakeDockerService(), reconciler=reconciler)

    assert fake_api.get("service_account", "demo", namespace="demo") is not None
    assert fake_api.get("service", "demo", namespace="demo") is None
    assert fake_api.get("secret", "docker-demo", namespace="demo") is not None


def test_git_pull_runs_before_build(
    make_plan: PlanFactory, reconciler: Reconciler, monkeypatch: pytest.MonkeyPatch
) -> None:
    pulled = []
    monkeypatch.setattr(deploy, "pull_latest", lambda app_dir: pulled.append(app_dir) or True)
    plan = make_plan(**{"git.pull": True})

    deploy_app(plan, docker_service=FakeDockerService(), reconciler=reconciler)

    assert pulled == [plan.build.app_dir]


def test_builds_cluster_clients_from_kubeconfig(
    make_plan: PlanFactory, fake_api: FakeKubeApi, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test the connection check, timeout and cleanup of the default client path."""
    plan = make_plan(**{"kube.timeout": 7})
    managers = []

    class Manager(FakeClientManager):
        def __init__(self, kubeconfig_path: object) -> None:
            super().__init__(fake_api)
            self.kubeconfig_path = kubeconfig_path
            self.closed = False
            managers.append(self)

        def get_server_version(self, timeout: int) -> str:
            assert timeout == 7
            return "1.29"

        def close(self) -> None:
            self.closed = True

    monkeypatch.setattr(deploy, "K8sClientManager", Manager)

    deploy_app(plan, docker_service=FakeDockerService())

    assert managers[0].kubeconfig_path == plan.cluster.kubeconfig
    assert managers[0].closed
    assert all(kwargs["_request_timeout"] == 7 for _, _, kwargs in fake_api.calls)


def test_rerun_keeps_autoscaled_replicas(
    make_plan: PlanFactory, reconciler: Reconciler, fake_api: FakeKubeApi
) -> None:
    plan = make_plan(**{"kube.hpa.enabled": True})
    deploy_app(plan, docker_service=FakeDockerService(), reconciler=reconciler)
    fake_api.get("deployment", "demo", namespace="demo").spec.replicas = 4

    outcomes = dict(deploy_app(plan, docker_service=FakeDockerService(), reconciler=reconciler))

    assert outcomes[DEPLOYMENT] is Outcome.UPDATED
    assert outcomes[SERVICE] is Outcome.UPDATED
    assert fake_api.get("deployment", "demo", namespace="demo").spec.replicas == 4
