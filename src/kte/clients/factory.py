"""Builds API clients from one connection config."""

from __future__ import annotations

import os
import tempfile
import uuid

from kubernetes import client
from kubernetes.dynamic import DynamicClient

from kte.clients.connection import ConnectionConfig
from kte.clients.kubernetes_client import KubernetesClient
from kte.core.exceptions import ClientConstructionError
from kte.reconcile.resource_manager import ResourceManager
from kte.utils.logging import get_logger, log_error

logger = get_logger(__name__)


def discovery_cache_file() -> str:
    """Path of a discovery cache file private to one dynamic client.

    DynamicClient otherwise caches discovery in one file per API host, shared
    by every client of that host in every process.
    """
    return os.path.join(tempfile.gettempdir(), f"kte-discovery-{uuid.uuid4().hex}.json")


class ClientFactory:
    """Creates independent clients that all target the same cluster.

    Every client gets its own ApiClient and therefore its own copy of the
    connection configuration; clients never share discovery caches.
    """

    def __init__(self, connection: ConnectionConfig):
        self.connection = connection

    @property
    def impersonate_user(self) -> str | None:
        return self.connection.impersonate_user

    def new_api_client(self) -> client.ApiClient:
        """Build a low-level ApiClient."""
        return self.connection.new_api_client()

    def new_kubernetes_client(self) -> KubernetesClient:
        """Build a typed client for core and RBAC operations."""
        return KubernetesClient(api_client=self.new_api_client())

    def new_dynamic_client(self) -> DynamicClient:
        """Build a discovery-backed dynamic client.

        Raises:
            ClientConstructionError: If API discovery fails
        """
        try:
            dynamic_client = DynamicClient(self.new_api_client(), cache_file=discovery_cache_file())
            dynamic_client.resources.invalidate_cache()
        except Exception as e:
            log_error(logger, "dynamic_client_failed", e, host=self.connection.host)
            raise ClientConstructionError(f"Failed to build dynamic client for {self.connection.host}: {e}") from e

        logger.debug(
            "dynamic_client_created",
            host=self.connection.host,
            impersonating=self.impersonate_user,
        )
        return dynamic_client

    def new_resource_manager(self, default_namespace: str | None = None) -> ResourceManager:
        """Build a resource manager backed by a fresh dynamic client.

        Args:
            default_namespace: Namespace for namespaced objects that omit one
        """
        return ResourceManager(self.new_dynamic_client(), default_namespace=default_namespace)
