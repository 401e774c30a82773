"""Kubernetes client manager for appdeployer."""

from pathlib import Path
from typing import Optional

import yaml
from kubernetes import client, config
from kubernetes.client import ApiClient, AppsV1Api, AutoscalingV2Api, CoreV1Api, NetworkingV1Api
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from appdeployer.core.errors import ConfigurationError, ReconcileError


class K8sClientManager:
    """Manages Kubernetes API clients built from a kubeconfig file.

    All typed API clients share one ``ApiClient`` so they talk to the same
    cluster with the same credentials.
    """

    def __init__(self, kubeconfig_path: Optional[Path] = None) -> None:
        """Initialize the Kubernetes client manager.

        Args:
            kubeconfig_path: Path to kubeconfig file (default location if not given)

        Raises:
            ConfigurationError: If the kubeconfig cannot be parsed or loaded
        """
        self._kubeconfig_path = kubeconfig_path
        self._api_client = self._load_config()

    def _load_config(self) -> ApiClient:
        """Load Kubernetes configuration from the current context."""
        config_file = str(self._kubeconfig_path) if self._kubeconfig_path else None
        source = self._kubeconfig_path or "default location"
        try:
            return config.new_client_from_config(config_file=config_file)
        except config.ConfigException as e:
            raise ConfigurationError(f"Failed to load kubeconfig from {source}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"kubeconfig {source} is not valid YAML: {e}") from e

    def get_core_v1_api(self) -> CoreV1Api:
        """Get CoreV1Api client for namespaces, secrets, service accounts, services and PVCs."""
        return client.CoreV1Api(self._api_client)

    def get_apps_v1_api(self) -> AppsV1Api:
        """Get AppsV1Api client for managing Deployments."""
        return client.AppsV1Api(self._api_client)

    def get_networking_v1_api(self) -> NetworkingV1Api:
        """Get NetworkingV1Api client for managing Ingresses."""
        return client.NetworkingV1Api(self._api_client)

    def get_autoscaling_v2_api(self) -> AutoscalingV2Api:
        """Get AutoscalingV2Api client for managing HorizontalPodAutoscalers."""
        return client.AutoscalingV2Api(self._api_client)

    def get_server_version(self, timeout: Optional[int] = None) -> str:
        """Get Kubernetes server version.

        Returns:
            Kubernetes version string

        Raises:
            ReconcileError: If the API server cannot be reached
        """
        try:
            version = client.VersionApi(self._api_client).get_code(_request_timeout=timeout)
        except ApiException as e:
            raise ReconcileError(f"Kubernetes connection test failed: {e.reason}") from e
        except HTTPError as e:
            raise ReconcileError(f"Kubernetes connection test failed: {e}") from e
        return f"{version.major}.{version.minor}"

    def close(self) -> None:
        """Release the connection pool."""
        self._api_client.close()
