"""Create-or-update reconciliation of Kubernetes resources.

Every resource kind goes through the same contract:

* should exist: create it; if the API answers 409 (already exists), read
  the live object and replace it with the desired one, unless the kind's
  spec is immutable, in which case it is left unchanged;
* should not exist: delete it; 404 (not found) counts as success.

Any other API error is fatal.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from appdeployer.core.errors import ReconcileError
from appdeployer.core.k8s_client import K8sClientManager

logger = logging.getLogger(__name__)

# Resource kind keys
NAMESPACE = "namespace"
PULL_SECRET = "pull-secret"
TLS_SECRET = "tls-secret"
SERVICE_ACCOUNT = "serviceaccount"
PVC = "pvc"
DEPLOYMENT = "deployment"
SERVICE = "service"
INGRESS = "ingress"
HPA = "hpa"

CLUSTER_IPS_FIELDS = ("cluster_ips", "cluster_i_ps")


class Outcome(str, Enum):
    """Result of reconciling one resource."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    ABSENT = "absent"


CarryOver = Callable[[Any, Any], None]


class ResourceKind:
    """Typed CRUD calls for one kind of Kubernetes resource.

    Methods are looked up on the typed API client by the generated naming
    scheme, e.g. ``create_namespaced_deployment`` or ``delete_namespace``.
    """

    def __init__(
        self,
        label: str,
        api: Any,
        resource: str,
        namespaced: bool = True,
        updatable: bool = True,
        carry_over: Optional[CarryOver] = None,
    ) -> None:
        """Initialize a resource kind.

        Args:
            label: Name shown to the user, e.g. "deployment"
            api: Typed API client (CoreV1Api, AppsV1Api, ...)
            resource: Resource part of the client method names, e.g. "persistent_volume_claim"
            namespaced: Whether the resource lives in a namespace
            updatable: Whether an existing resource may be replaced
            carry_over: Copies server-owned fields from the live object onto the
                desired one before a replace
        """
        self.label = label
        self.api = api
        self.resource = resource
        self.namespaced = namespaced
        self.updatable = updatable
        self.carry_over = carry_over

    def _call(self, verb: str, namespace: str, **kwargs: Any) -> Any:
        scope = "namespaced_" if self.namespaced else ""
        method = getattr(self.api, f"{verb}_{scope}{self.resource}")
        if self.namespaced:
            kwargs["namespace"] = namespace
        return method(**kwargs)

    def create(self, namespace: str, body: Any, **kwargs: Any) -> Any:
        return self._call("create", namespace, body=body, **kwargs)

    def read(self, name: str, namespace: str, **kwargs: Any) -> Any:
        return self._call("read", namespace, name=name, **kwargs)

    def replace(self, name: str, namespace: str, body: Any, **kwargs: Any) -> Any:
        return self._call("replace", namespace, name=name, body=body, **kwargs)

    def delete(self, name: str, namespace: str, **kwargs: Any) -> Any:
        return self._call("delete", namespace, name=name, **kwargs)


@dataclass(frozen=True)
class DesiredResource:
    """Declared state of one resource: its desired body, or that it must be absent."""

    kind: str
    name: str
    body: Any = None
    present: bool = True


def keep_namespace_metadata(live: Any, desired: Any) -> None:
    """Keep labels and annotations other tools put on a shared namespace."""
    desired.metadata.labels = {**(live.metadata.labels or {}), **(desired.metadata.labels or {})}
    desired.metadata.annotations = {
        **(live.metadata.annotations or {}),
        **(desired.metadata.annotations or {}),
    }


def keep_service_cluster_ip(live: Any, desired: Any) -> None:
    """ClusterIP is allocated by the API server and immutable."""
    desired.spec.cluster_ip = live.spec.cluster_ip
    # generated model field name differs across client releases
    for field in CLUSTER_IPS_FIELDS:
        if hasattr(desired.spec, field):
            setattr(desired.spec, field, getattr(live.spec, field))


def keep_deployment_replicas(live: Any, desired: Any) -> None:
    """Leave the replica count to the autoscaler when the desired body does not set one."""
    if desired.spec.replicas is None:
        desired.spec.replicas = live.spec.replicas


def keep_service_account_secrets(live: Any, desired: Any) -> None:
    """Token secrets are linked by the token controller."""
    desired.secrets = live.secrets


def resource_kinds(k8s: K8sClientManager) -> Dict[str, ResourceKind]:
    """Build the resource kinds managed by appdeployer.

    Args:
        k8s: Kubernetes client manager

    Returns:
        Dictionary mapping resource kind key to its typed CRUD calls
    """
    core_api = k8s.get_core_v1_api()
    apps_api = k8s.get_apps_v1_api()
    networking_api = k8s.get_networking_v1_api()
    autoscaling_api = k8s.get_autoscaling_v2_api()

    return {
        NAMESPACE: ResourceKind(
            "namespace", core_api, "namespace", namespaced=False, carry_over=keep_namespace_metadata
        ),
        PULL_SECRET: ResourceKind("secret", core_api, "secret"),
        TLS_SECRET: ResourceKind("tls secret", core_api, "secret"),
        SERVICE_ACCOUNT: ResourceKind(
            "serviceaccount", core_api, "service_account", carry_over=keep_service_account_secrets
        ),
        # PVC spec is immutable after creation
        PVC: ResourceKind("pvc", core_api, "persistent_volume_claim", updatable=False),
        DEPLOYMENT: ResourceKind(
            "deployment", apps_api, "deployment", carry_over=keep_deployment_replicas
        ),
        SERVICE: ResourceKind("service", core_api, "service", carry_over=keep_service_cluster_ip),
        INGRESS: ResourceKind("ingress", networking_api, "ingress"),
        HPA: ResourceKind("hpa", autoscaling_api, "horizontal_pod_autoscaler"),
    }


class Reconciler:
    """Applies desired resources to one namespace, one blocking call at a time."""

    def __init__(
        self,
        kinds: Mapping[str, ResourceKind],
        namespace: str,
        timeout: Optional[int] = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            kinds: Resource kinds by key, see ``resource_kinds``
            namespace: Namespace of every namespaced resource
            timeout: Request timeout in seconds passed to every API call
        """
        self._kinds = kinds
        self.namespace = namespace
        self._timeout = timeout

    def kind(self, key: str) -> ResourceKind:
        return self._kinds[key]

    def reconcile(self, resource: DesiredResource) -> Outcome:
        """Make a resource exist as declared, or make sure it is gone."""
        if resource.present:
            return self.apply(resource.kind, resource.body)
        return self.remove(resource.kind, resource.name)

    def apply(self, key: str, body: Any) -> Outcome:
        """Create a resource, replacing it if it already exists.

        Returns:
            CREATED, UPDATED, or UNCHANGED for kinds that cannot be updated

        Raises:
            ReconcileError: On any API error other than "already exists"
        """
        kind = self._kinds[key]
        name = body.metadata.name

        try:
            kind.create(self.namespace, body, _request_timeout=self._timeout)
            logger.debug("Created %s %s/%s", kind.label, self.namespace, name)
            return Outcome.CREATED
        except ApiException as e:
            if e.status != 409:
                raise ReconcileError(f"failed to create {kind.label} resource {name}: {e.reason}") from e
        except HTTPError as e:
            raise ReconcileError(f"failed to create {kind.label} resource {name}: {e}") from e

        if not kind.updatable:
            logger.debug("%s %s/%s already exists and is left as is", kind.label, self.namespace, name)
            return Outcome.UNCHANGED

        try:
            live = kind.read(name, self.namespace, _request_timeout=self._timeout)
            body.metadata.resource_version = live.metadata.resource_version
            if kind.carry_over:
                kind.carry_over(live, body)
            kind.replace(name, self.namespace, body, _request_timeout=self._timeout)
        except ApiException as e:
            raise ReconcileError(f"failed to update {kind.label} resource {name}: {e.reason}") from e
        except HTTPError as e:
            raise ReconcileError(f"failed to update {kind.label} resource {name}: {e}") from e

        logger.debug("Replaced %s %s/%s", kind.label, self.namespace, name)
        return Outcome.UPDATED

    def remove(self, key: str, name: str) -> Outcome:
        """Delete a resource if it exists.

        Returns:
            DELETED, or ABSENT when there was nothing to delete

        Raises:
            ReconcileError: On any API error other than "not found"
        """
        kind = self._kinds[key]

        try:
            kind.delete(name, self.namespace, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status == 404:
                logger.debug("%s %s/%s not present", kind.label, self.namespace, name)
                return Outcome.ABSENT
            raise ReconcileError(f"failed to delete {kind.label} resource {name}: {e.reason}") from e
        except HTTPError as e:
            raise ReconcileError(f"failed to delete {kind.label} resource {name}: {e}") from e

        logger.debug("Deleted %s %s/%s", kind.label, self.namespace, name)
        return Outcome.DELETED
