"""Deployment logic for appdeployer."""

import logging
from typing import List, Optional, Tuple

from rich.console import Console

from appdeployer.core.docker_service import DockerService
from appdeployer.core.k8s_client import K8sClientManager
from appdeployer.core.manifests import desired_resources
from appdeployer.core.models import DeployPlan
from appdeployer.core.reconciler import Outcome, Reconciler, resource_kinds
from appdeployer.core.vcs import pull_latest

console = Console()
logger = logging.getLogger(__name__)

MESSAGES = {
    Outcome.CREATED: "[green]{label} resource successfully created[/green]",
    Outcome.UPDATED: "[green]{label} resource successfully updated[/green]",
    Outcome.UNCHANGED: "[dim]{label} resource unchanged[/dim]",
    Outcome.DELETED: "[yellow]{label} resource successfully deleted[/yellow]",
    Outcome.ABSENT: "[dim]{label} resource not present[/dim]",
}


def build_and_push(plan: DeployPlan, docker_service: Optional[DockerService] = None) -> str:
    """Build the app image and push it to the registry.

    Args:
        plan: Resolved deploy plan
        docker_service: Service to use (connects to the local daemon if not given)

    Returns:
        Full image reference
    """
    service = docker_service or DockerService(timeout=plan.build.timeout)
    with service:
        console.print(f"[cyan]Building image {plan.build.image}[/cyan]")
        service.build_image(plan.build)
        console.print(f"[cyan]Pushing image {plan.build.image}[/cyan]")
        image = service.push_image(plan.build)
    console.print(f"[green]image {image} successfully pushed[/green]")
    return image


def apply_resources(plan: DeployPlan, reconciler: Reconciler) -> List[Tuple[str, Outcome]]:
    """Reconcile every managed resource, in order, stopping at the first failure.

    Returns:
        (resource kind key, outcome) pairs in apply order
    """
    outcomes = []
    for resource in desired_resources(plan):
        outcome = reconciler.reconcile(resource)
        label = reconciler.kind(resource.kind).label
        console.print(MESSAGES[outcome].format(label=label))
        outcomes.append((resource.kind, outcome))
    return outcomes


def deploy_app(
    plan: DeployPlan,
    docker_service: Optional[DockerService] = None,
    reconciler: Optional[Reconciler] = None,
) -> List[Tuple[str, Outcome]]:
    """Pull, build, push and run the app on Kubernetes.

    Args:
        plan: Resolved deploy plan
        docker_service: Image service (connects to the local daemon if not given)
        reconciler: Resource reconciler (built from the plan's kubeconfig if not given)

    Returns:
        (resource kind key, outcome) pairs in apply order

    Raises:
        AppDeployerError: On the first failing step; earlier steps are not rolled back
    """
    if plan.git_pull:
        pull_latest(plan.build.app_dir)

    build_and_push(plan, docker_service)

    if reconciler is not None:
        return apply_resources(plan, reconciler)

    k8s = K8sClientManager(kubeconfig_path=plan.cluster.kubeconfig)
    try:
        version = k8s.get_server_version(timeout=plan.cluster.timeout)
        logger.info("Connected to Kubernetes %s", version)
        reconciler = Reconciler(
            resource_kinds(k8s),
            namespace=plan.cluster.namespace,
            timeout=plan.cluster.timeout,
        )
        return apply_resources(plan, reconciler)
    finally:
        k8s.close()
