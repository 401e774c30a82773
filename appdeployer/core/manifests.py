"""Desired state of every Kubernetes resource appdeployer manages.

Each builder maps resolved options to a typed ``kubernetes.client`` model.
Everything is named after the app and labelled ``app=<app name>``.
"""

import base64
import json
import shlex
from typing import List, Optional, Union

from kubernetes import client

from appdeployer.core.certs import generate_self_signed, load_certificate_pair
from appdeployer.core.models import (
    BuildOptions,
    DeploymentOptions,
    DeployPlan,
    HPAOptions,
    IngressOptions,
    ProbeOptions,
    ProbeType,
    PVCOptions,
    ResourceQuota,
    ServiceOptions,
)
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
    DesiredResource,
)


def _b64(data: Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode()
    return base64.b64encode(data).decode()


def _metadata(name: str, namespace: str, app_name: str) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(name=name, namespace=namespace, labels={"app": app_name})


def _int_or_string(value: str) -> Union[int, str]:
    """Rolling update bounds are either absolute numbers or percentages."""
    return int(value) if value.isdigit() else value


def build_namespace(namespace: str) -> client.V1Namespace:
    return client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))


def docker_config_json(build: BuildOptions) -> bytes:
    """Registry credentials in ``.dockerconfigjson`` format.

    Explicit username and password win; otherwise the local docker
    configuration file is used as is.
    """
    if build.has_credentials:
        auths = {
            build.registry: {
                "username": build.username,
                "password": build.password,
                "auth": _b64(f"{build.username}:{build.password}"),
            }
        }
        return json.dumps({"auths": auths}).encode()
    return build.docker_config.read_bytes()


def build_pull_secret(name: str, namespace: str, app_name: str, build: BuildOptions) -> client.V1Secret:
    return client.V1Secret(
        metadata=_metadata(name, namespace, app_name),
        type="kubernetes.io/dockerconfigjson",
        data={".dockerconfigjson": _b64(docker_config_json(build))},
    )


def build_service_account(
    name: str, namespace: str, pull_secret_name: str
) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        metadata=_metadata(name, namespace, name),
        image_pull_secrets=[client.V1LocalObjectReference(name=pull_secret_name)],
    )


def build_tls_secret(name: str, namespace: str, app_name: str, ingress: IngressOptions) -> client.V1Secret:
    if ingress.self_signed:
        crt_pem, key_pem = generate_self_signed(ingress.host, ingress.self_signed_years)
    else:
        crt_pem, key_pem = load_certificate_pair(ingress.crt_path, ingress.key_path)

    return client.V1Secret(
        metadata=_metadata(name, namespace, app_name),
        type="kubernetes.io/tls",
        data={"tls.crt": _b64(crt_pem), "tls.key": _b64(key_pem)},
    )


def build_pvc(name: str, namespace: str, pvc: PVCOptions) -> client.V1PersistentVolumeClaim:
    return client.V1PersistentVolumeClaim(
        metadata=_metadata(name, namespace, name),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=[pvc.access_mode.value],
            storage_class_name=pvc.storage_class_name or None,
            resources=client.V1VolumeResourceRequirements(requests={"storage": pvc.storage_size}),
        ),
    )


def build_probe(probe: ProbeOptions, port: int) -> Optional[client.V1Probe]:
    """Container probe, or None when the probe is disabled."""
    if not probe.enabled:
        return None

    handler = {}
    if probe.type is ProbeType.HTTP_GET:
        handler["http_get"] = client.V1HTTPGetAction(path=probe.path, port=port, scheme=probe.scheme)
    elif probe.type is ProbeType.TCP_SOCKET:
        handler["tcp_socket"] = client.V1TCPSocketAction(port=port)
    else:
        handler["_exec"] = client.V1ExecAction(command=shlex.split(probe.command))

    return client.V1Probe(
        initial_delay_seconds=probe.initial_delay_seconds,
        timeout_seconds=probe.timeout_seconds,
        period_seconds=probe.period_seconds,
        success_threshold=probe.success_threshold,
        failure_threshold=probe.failure_threshold,
        **handler,
    )


def build_resources(quota: ResourceQuota) -> Optional[client.V1ResourceRequirements]:
    requests = {"cpu": quota.cpu_request, "memory": quota.memory_request}
    limits = {"cpu": quota.cpu_limit, "memory": quota.memory_limit}
    requests = {k: v for k, v in requests.items() if v}
    limits = {k: v for k, v in limits.items() if v}
    if not requests and not limits:
        return None
    return client.V1ResourceRequirements(requests=requests or None, limits=limits or None)


def build_deployment(
    name: str,
    namespace: str,
    image: str,
    pull_secret_name: str,
    deployment: DeploymentOptions,
    autoscaled: bool = False,
) -> client.V1Deployment:
    """App deployment.

    When ``autoscaled`` is set, replicas are left unset so that a replace
    keeps the count chosen by the autoscaler.
    """
    labels = {"app": name}

    volumes: Optional[List[client.V1Volume]] = None
    volume_mounts: Optional[List[client.V1VolumeMount]] = None
    if deployment.volume_mount.enabled:
        volumes = [
            client.V1Volume(
                name=name,
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=name),
            )
        ]
        volume_mounts = [client.V1VolumeMount(name=name, mount_path=deployment.volume_mount.mount_path)]

    container = client.V1Container(
        name=name,
        image=image,
        image_pull_policy="Always",
        ports=[client.V1ContainerPort(container_port=deployment.port, protocol="TCP")],
        env=[client.V1EnvVar(name=k, value=v) for k, v in deployment.env.items()] or None,
        resources=build_resources(deployment.quota),
        liveness_probe=build_probe(deployment.liveness_probe, deployment.port),
        readiness_probe=build_probe(deployment.readiness_probe, deployment.port),
        volume_mounts=volume_mounts,
    )

    return client.V1Deployment(
        metadata=_metadata(name, namespace, name),
        spec=client.V1DeploymentSpec(
            replicas=None if autoscaled else deployment.replicas,
            selector=client.V1LabelSelector(match_labels=labels),
            strategy=client.V1DeploymentStrategy(
                type="RollingUpdate",
                rolling_update=client.V1RollingUpdateDeployment(
                    max_surge=_int_or_string(deployment.rolling_update.max_surge),
                    max_unavailable=_int_or_string(deployment.rolling_update.max_unavailable),
                ),
            ),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    service_account_name=name,
                    image_pull_secrets=[client.V1LocalObjectReference(name=pull_secret_name)],
                    containers=[container],
                    volumes=volumes,
                ),
            ),
        ),
    )


def build_service(name: str, namespace: str, service: ServiceOptions) -> client.V1Service:
    return client.V1Service(
        metadata=_metadata(name, namespace, name),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector={"app": name},
            ports=[
                client.V1ServicePort(
                    name="http",
                    port=service.port,
                    target_port=service.target_port,
                    protocol="TCP",
                )
            ],
        ),
    )


def build_ingress(
    name: str,
    namespace: str,
    ingress: IngressOptions,
    service_port: int,
    tls_secret_name: str,
) -> client.V1Ingress:
    tls = None
    if ingress.tls:
        tls = [client.V1IngressTLS(hosts=[ingress.host], secret_name=tls_secret_name)]

    return client.V1Ingress(
        metadata=_metadata(name, namespace, name),
        spec=client.V1IngressSpec(
            tls=tls,
            rules=[
                client.V1IngressRule(
                    host=ingress.host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/",
                                path_type="Prefix",
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=name,
                                        port=client.V1ServiceBackendPort(number=service_port),
                                    )
                                ),
                            )
                        ]
                    ),
                )
            ],
        ),
    )


def build_hpa(name: str, namespace: str, hpa: HPAOptions) -> client.V2HorizontalPodAutoscaler:
    return client.V2HorizontalPodAutoscaler(
        metadata=_metadata(name, namespace, name),
        spec=client.V2HorizontalPodAutoscalerSpec(
            scale_target_ref=client.V2CrossVersionObjectReference(
                api_version="apps/v1",
                kind="Deployment",
                name=name,
            ),
            min_replicas=hpa.min_replicas,
            max_replicas=hpa.max_replicas,
            metrics=[
                client.V2MetricSpec(
                    type="Resource",
                    resource=client.V2ResourceMetricSource(
                        name="cpu",
                        target=client.V2MetricTarget(
                            type="Utilization",
                            average_utilization=hpa.cpu_rate,
                        ),
                    ),
                )
            ],
        ),
    )


def desired_resources(plan: DeployPlan) -> List[DesiredResource]:
    """Every managed resource in apply order, including the ones that must be absent.

    Order matters: the namespace comes before everything in it, the pull
    secret before the service account and deployment that reference it, the
    PVC before the deployment that mounts it, the service before the ingress
    routing to it, and the autoscaler last.
    """
    name = plan.app_name
    cluster = plan.cluster
    namespace = cluster.namespace
    volume_mount = cluster.deployment.volume_mount.enabled

    tls_secret = None
    if cluster.ingress.tls:
        tls_secret = build_tls_secret(plan.tls_secret_name, namespace, name, cluster.ingress)

    return [
        DesiredResource(NAMESPACE, namespace, build_namespace(namespace)),
        DesiredResource(
            PULL_SECRET,
            plan.pull_secret_name,
            build_pull_secret(plan.pull_secret_name, namespace, name, plan.build),
        ),
        DesiredResource(
            SERVICE_ACCOUNT,
            name,
            build_service_account(name, namespace, plan.pull_secret_name),
        ),
        DesiredResource(TLS_SECRET, plan.tls_secret_name, tls_secret, present=tls_secret is not None),
        DesiredResource(
            PVC,
            name,
            build_pvc(name, namespace, cluster.pvc) if volume_mount else None,
            present=volume_mount,
        ),
        DesiredResource(
            DEPLOYMENT,
            name,
            build_deployment(
                name,
                namespace,
                plan.build.image,
                plan.pull_secret_name,
                cluster.deployment,
                autoscaled=cluster.hpa.enabled,
            ),
        ),
        DesiredResource(SERVICE, name, build_service(name, namespace, cluster.service)),
        DesiredResource(
            INGRESS,
            name,
            build_ingress(name, namespace, cluster.ingress, cluster.service.port, plan.tls_secret_name),
        ),
        DesiredResource(
            HPA,
            name,
            build_hpa(name, namespace, cluster.hpa) if cluster.hpa.enabled else None,
            present=cluster.hpa.enabled,
        ),
    ]
