"""Typed Kubernetes client for test-environment operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from kubernetes.client.models import (
    RbacV1Subject,
    V1Namespace,
    V1Node,
    V1ObjectMeta,
    V1Pod,
    V1RoleBinding,
    V1RoleRef,
    V1ServiceAccount,
)

from kte.core.exceptions import KubernetesError
from kte.utils.logging import get_logger

if TYPE_CHECKING:
    from kte.clients.connection import ConnectionConfig

logger = get_logger(__name__)


class KubernetesClient:
    """Kubernetes client wrapper bound to one connection config."""

    def __init__(
        self,
        connection: ConnectionConfig | None = None,
        api_client: client.ApiClient | None = None,
    ):
        """Initialize Kubernetes client.

        Exactly one of ``connection`` or ``api_client`` is used; there is no
        fallback to a default kubeconfig.

        Args:
            connection: Connection config to build a fresh ApiClient from
            api_client: Pre-built ApiClient (takes precedence)
        """
        if api_client is None:
            if connection is None:
                raise KubernetesError("KubernetesClient requires a connection config or an ApiClient")
            api_client = connection.new_api_client()

        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)
        self.rbac_v1 = client.RbacAuthorizationV1Api(api_client)

        logger.debug(
            "k8s_client_initialized",
            impersonating=connection.impersonate_user if connection else None,
        )

    # ------------------------------------------------------------------
    # Nodes and pods
    # ------------------------------------------------------------------

    def get_nodes(self) -> list[V1Node]:
        """Get all nodes in the cluster.

        Returns:
            List of V1Node objects

        Raises:
            KubernetesError: If nodes cannot be retrieved
        """
        try:
            logger.debug("getting_nodes")
            response = self.core_v1.list_node()
            nodes = response.items

            logger.info("nodes_retrieved", count=len(nodes))
            return nodes

        except ApiException as e:
            logger.error("get_nodes_failed", status=e.status, reason=e.reason)
            raise KubernetesError(f"Failed to get nodes: {e.reason}") from e

    def check_nodes_ready(self) -> tuple[bool, list[str]]:
        """Check if all nodes are in Ready state.

        Returns:
            Tuple of (all_ready: bool, unready_nodes: list)
        """
        nodes = self.get_nodes()
        unready_nodes = []

        for node in nodes:
            conditions = (node.status.conditions if node.status else None) or []
            ready = any(c.type == "Ready" and c.status == "True" for c in conditions)
            if not ready:
                unready_nodes.append(node.metadata.name)

        all_ready = not unready_nodes
        logger.info("nodes_ready_check", all_ready=all_ready, unready_count=len(unready_nodes))
        return all_ready, unready_nodes

    def get_pods(self, namespace: str, label_selector: str | None = None) -> list[V1Pod]:
        """Get pods in a namespace.

        Args:
            namespace: Namespace to query
            label_selector: Label selector (e.g., "app=source-controller")

        Returns:
            List of V1Pod objects

        Raises:
            KubernetesError: If pods cannot be retrieved (including 403 Forbidden)
        """
        try:
            logger.debug("getting_pods", namespace=namespace, selector=label_selector)
            response = self.core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=label_selector
            )
            return response.items

        except ApiException as e:
            logger.error("get_pods_failed", namespace=namespace, status=e.status, reason=e.reason)
            raise KubernetesError(f"Failed to get pods in {namespace}: {e.reason}") from e

    # ------------------------------------------------------------------
    # Scoped identity resources
    # ------------------------------------------------------------------

    def create_namespace(self, metadata: V1ObjectMeta) -> V1Namespace:
        """Create a namespace.

        Args:
            metadata: Namespace metadata (name or generate_name)

        Returns:
            The created V1Namespace

        Raises:
            KubernetesError: If creation fails
        """
        try:
            namespace = self.core_v1.create_namespace(body=V1Namespace(metadata=metadata))
            logger.info("namespace_created", namespace=namespace.metadata.name)
            return namespace

        except ApiException as e:
            logger.error("create_namespace_failed", status=e.status, reason=e.reason)
            raise KubernetesError(f"Failed to create namespace: {e.reason}") from e

    def create_service_account(self, namespace: str, metadata: V1ObjectMeta) -> V1ServiceAccount:
        """Create a service account in ``namespace``.

        Raises:
            KubernetesError: If creation fails
        """
        try:
            service_account = self.core_v1.create_namespaced_service_account(
                namespace=namespace, body=V1ServiceAccount(metadata=metadata)
            )
            logger.info(
                "service_account_created",
                namespace=namespace,
                name=service_account.metadata.name,
            )
            return service_account

        except ApiException as e:
            logger.error(
                "create_service_account_failed",
                namespace=namespace,
                status=e.status,
                reason=e.reason,
            )
            raise KubernetesError(f"Failed to create service account in {namespace}: {e.reason}") from e

    def create_role_binding(
        self,
        namespace: str,
        metadata: V1ObjectMeta,
        service_account: str,
        cluster_role: str,
    ) -> V1RoleBinding:
        """Bind a cluster role to a service account within ``namespace``.

        Args:
            namespace: Namespace the binding (and its grant) is limited to
            metadata: Role binding metadata
            service_account: Subject service account name
            cluster_role: ClusterRole to reference

        Returns:
            The created V1RoleBinding

        Raises:
            KubernetesError: If creation fails
        """
        body = V1RoleBinding(
            metadata=metadata,
            subjects=[
                RbacV1Subject(kind="ServiceAccount", name=service_account, namespace=namespace)
            ],
            role_ref=V1RoleRef(
                api_group="rbac.authorization.k8s.io",
                kind="ClusterRole",
                name=cluster_role,
            ),
        )
        try:
            role_binding = self.rbac_v1.create_namespaced_role_binding(namespace=namespace, body=body)
            logger.info(
                "role_binding_created",
                namespace=namespace,
                name=role_binding.metadata.name,
                cluster_role=cluster_role,
            )
            return role_binding

        except ApiException as e:
            logger.error(
                "create_role_binding_failed",
                namespace=namespace,
                status=e.status,
                reason=e.reason,
            )
            raise KubernetesError(f"Failed to create role binding in {namespace}: {e.reason}") from e

    def delete_namespace(self, name: str) -> bool:
        """Delete a namespace.

        Returns:
            True if deleted, False if it was already absent or still terminating

        Raises:
            KubernetesError: On any error other than 404 or 409
        """
        # A namespace that is still terminating answers a repeated delete with 409.
        return self._delete(
            "namespace",
            name,
            None,
            lambda: self.core_v1.delete_namespace(name=name),
            gone_statuses=(404, 409),
        )

    def delete_service_account(self, name: str, namespace: str) -> bool:
        """Delete a service account.

        Returns:
            True if deleted, False if it was already absent

        Raises:
            KubernetesError: On any error other than 404
        """
        return self._delete(
            "service_account",
            name,
            namespace,
            lambda: self.core_v1.delete_namespaced_service_account(name=name, namespace=namespace),
        )

    def delete_role_binding(self, name: str, namespace: str) -> bool:
        """Delete a role binding.

        Returns:
            True if deleted, False if it was already absent

        Raises:
            KubernetesError: On any error other than 404
        """
        return self._delete(
            "role_binding",
            name,
            namespace,
            lambda: self.rbac_v1.delete_namespaced_role_binding(name=name, namespace=namespace),
        )

    def _delete(
        self,
        kind: str,
        name: str,
        namespace: str | None,
        call,
        gone_statuses: tuple[int, ...] = (404,),
    ) -> bool:
        try:
            call()
            logger.info(f"{kind}_deleted", name=name, namespace=namespace)
            return True

        except ApiException as e:
            if e.status in gone_statuses:
                logger.debug(f"{kind}_already_absent", name=name, namespace=namespace, status=e.status)
                return False

            logger.error(
                f"delete_{kind}_failed",
                name=name,
                namespace=namespace,
                status=e.status,
                reason=e.reason,
            )
            raise KubernetesError(f"Failed to delete {kind} {name}: {e.reason}") from e
