"""
Kubernetes client handle for webhook handlers.

Handlers that need to look at the cluster (the namespace of the reviewed
object, the pod that issued a request, ...) receive an explicitly constructed
and initialized ``KubernetesContext`` through the aiohttp application instead
of reaching for process-wide client state.
"""

import asyncio
import logging
import os

from aiohttp import web
from kubernetes import client, config

from admission_server.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_KUBECONFIG_PATH = os.path.join(os.path.expanduser("~"), ".kube", "config")


class KubernetesContext:
    """An explicitly initialized Kubernetes API client."""

    def __init__(self, kubeconfig: str = "", api_client: client.ApiClient | None = None):
        """
        Create an uninitialized context.

        Args:
            kubeconfig: kubeconfig used when not running in a pod
            api_client: Pre-built API client (skips configuration loading)
        """
        self.kubeconfig = kubeconfig or DEFAULT_KUBECONFIG_PATH
        self._api_client = api_client

    @property
    def initialized(self) -> bool:
        return self._api_client is not None

    def initialize(self) -> "KubernetesContext":
        """
        Load the cluster configuration and build the API client.

        In-cluster configuration is tried first, the kubeconfig second.

        Returns:
            This context, for chaining

        Raises:
            ConfigurationError: If neither configuration can be loaded
        """
        if self._api_client is not None:
            return self

        configuration = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=configuration)
            logger.debug("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig, client_configuration=configuration
                )
                logger.debug(f"Loaded kubeconfig from {self.kubeconfig}")
            except (config.ConfigException, OSError) as e:
                raise ConfigurationError(
                    f"Failed to load Kubernetes configuration: {e}",
                    user_action="Run inside a cluster or set KUBECONFIG",
                    cause=e,
                ) from e

        self._api_client = client.ApiClient(configuration)
        return self

    @property
    def api_client(self) -> client.ApiClient:
        if self._api_client is None:
            raise ConfigurationError(
                "Kubernetes context used before initialize()",
                user_action="Call initialize() during startup",
            )
        return self._api_client

    @property
    def core_v1(self) -> client.CoreV1Api:
        return client.CoreV1Api(self.api_client)

    async def get_namespace(self, name: str) -> client.V1Namespace:
        """Read a namespace without blocking the event loop."""
        return await asyncio.to_thread(self.core_v1.read_namespace, name)

    async def get_pod(self, namespace: str, name: str) -> client.V1Pod:
        """Read a pod without blocking the event loop."""
        return await asyncio.to_thread(self.core_v1.read_namespaced_pod, name, namespace)

    def close(self) -> None:
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None


KUBERNETES_CONTEXT_KEY = web.AppKey("kubernetes_context", KubernetesContext)


def get_kubernetes_context(request: web.Request) -> KubernetesContext:
    """
    Get the Kubernetes context mounted on the dispatcher.

    Raises:
        ConfigurationError: If the server was started without one
    """
    try:
        return request.app[KUBERNETES_CONTEXT_KEY]
    except KeyError as e:
        raise ConfigurationError(
            "No Kubernetes context is available to webhook handlers",
            user_action="Pass a KubernetesContext when creating the server",
        ) from e
