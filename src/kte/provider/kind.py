"""kind-backed cluster providers."""

from __future__ import annotations

import hashlib
import time
from collections.abc import Mapping
from pathlib import Path

from kte.clients.kind_client import KindClient
from kte.core.config import CLUSTER_NAME_PREFIX, DEFAULT_CREATE_TIMEOUT_SECONDS
from kte.core.context import Context, ensure_context
from kte.core.exceptions import ClusterDeletionError
from kte.core.models import ClusterHandle, ClusterState, ClusterTopology, ProviderVariant
from kte.interfaces.cluster_provider import ClusterProvider
from kte.interfaces.cluster_runtime import ClusterRuntime
from kte.provider.policy import PolicySignals, resolve_policy
from kte.utils.logging import get_logger, log_error, log_operation

logger = get_logger(__name__)


class ManagedClusterProvider(ClusterProvider):
    """Provider that creates, owns and deletes its own kind cluster."""

    variant = ProviderVariant.MANAGED

    def __init__(
        self,
        artifact_dir: str | Path,
        runtime: ClusterRuntime | None = None,
        node_image: str | None = None,
        retain: bool = False,
    ):
        """Initialize managed provider.

        Args:
            artifact_dir: Root directory for per-cluster artifacts
            runtime: Cluster runtime, defaults to the kind CLI
            node_image: Node image override
            retain: Keep nodes if creation fails
        """
        self.runtime = runtime or KindClient()
        self.handle = ClusterHandle(
            name_prefix=CLUSTER_NAME_PREFIX,
            artifact_dir=Path(artifact_dir),
            node_image=node_image,
            retain=retain,
        )

        logger.debug(
            "managed_provider_initialized",
            cluster_name=self.cluster_name,
            artifact_dir=str(self.handle.artifact_dir),
        )

    @property
    def cluster_name(self) -> str:
        return self.handle.name

    @property
    def kubeconfig_path(self) -> str:
        return str(self.handle.kubeconfig_path)

    @property
    def logs_dir(self) -> str:
        return str(self.handle.logs_dir)

    @property
    def state(self) -> ClusterState:
        """Current lifecycle state."""
        return self.handle.state

    def create(
        self,
        topology: ClusterTopology | None = None,
        timeout: float = DEFAULT_CREATE_TIMEOUT_SECONDS,
        ctx: Context | None = None,
    ) -> None:
        """Create the cluster within ``timeout`` seconds.

        Raises:
            ClusterLifecycleError: If the cluster was already created
            ClusterRuntimeError: If kind fails
            DeadlineExceededError: If the cluster is not ready in time
        """
        ctx = ensure_context(ctx)
        self.handle.require("create", ClusterState.PENDING)
        self.handle.transition(ClusterState.CREATING)

        logger.info("creating_cluster", cluster_name=self.cluster_name, timeout=timeout)
        start = time.monotonic()
        try:
            self.runtime.create(
                self.cluster_name,
                topology,
                self.handle.kubeconfig_path,
                wait_timeout=timeout,
                ctx=ctx.with_timeout(timeout),
                config_path=self.handle.kind_config_path if topology is not None else None,
                node_image=self.handle.node_image,
                retain=self.handle.retain,
            )
        except Exception as e:
            self.handle.transition(ClusterState.FAILED)
            log_error(logger, "cluster_create_failed", e, cluster_name=self.cluster_name)
            raise

        self.handle.transition(ClusterState.READY)
        log_operation(
            logger,
            "create_cluster",
            started=start,
            cluster_name=self.cluster_name,
            kubeconfig=self.kubeconfig_path,
        )

    def collect_logs(self, ctx: Context | None = None) -> None:
        """Export cluster logs into ``logs_dir``.

        Raises:
            ClusterLifecycleError: Unless the cluster is ready or failed
        """
        self.handle.require("collect logs for", ClusterState.READY, ClusterState.FAILED)
        self.runtime.collect_logs(self.cluster_name, self.handle.logs_dir, ensure_context(ctx))
        logger.info("cluster_logs_collected", cluster_name=self.cluster_name, logs_dir=self.logs_dir)

    def delete(self, ctx: Context | None = None) -> None:
        """Delete the cluster.

        A failed delete leaves the handle in the failed state so it can be
        retried.

        Raises:
            ClusterLifecycleError: Unless the cluster is ready or failed
            ClusterDeletionError: If the runtime could not delete the cluster
        """
        self.handle.require("delete", ClusterState.READY, ClusterState.FAILED)
        self.handle.transition(ClusterState.DELETING)

        try:
            self.runtime.delete(self.cluster_name, self.handle.kubeconfig_path, ensure_context(ctx))
        except Exception as e:
            self.handle.transition(ClusterState.FAILED)
            log_error(logger, "cluster_leaked", e, cluster_name=self.cluster_name, kubeconfig=self.kubeconfig_path)
            raise ClusterDeletionError(
                f"Failed to delete cluster {self.cluster_name}, its resources may have leaked: {e}",
                cluster_name=self.cluster_name,
            ) from e

        self.handle.transition(ClusterState.DELETED)
        logger.info("cluster_deleted", cluster_name=self.cluster_name)


class UnmanagedClusterProvider(ClusterProvider):
    """Provider for an externally supplied cluster it never creates or deletes."""

    variant = ProviderVariant.UNMANAGED

    def __init__(self, kubeconfig_path: str | Path):
        self._kubeconfig_path = str(kubeconfig_path)

        logger.debug(
            "unmanaged_provider_initialized",
            cluster_name=self.cluster_name,
            kubeconfig=self._kubeconfig_path,
        )

    @property
    def cluster_name(self) -> str:
        """Deterministic name derived from the kubeconfig path."""
        digest = hashlib.sha256(self._kubeconfig_path.encode("utf-8")).hexdigest()
        return f"{CLUSTER_NAME_PREFIX}{digest}"

    @property
    def kubeconfig_path(self) -> str:
        return self._kubeconfig_path

    @property
    def logs_dir(self) -> None:
        return None

    def _bypass(self, operation: str) -> None:
        logger.info(
            "lifecycle_bypassed",
            operation=operation,
            cluster_name=self.cluster_name,
            kubeconfig=self._kubeconfig_path,
            reason="cluster was supplied externally",
        )

    def create(
        self,
        topology: ClusterTopology | None = None,
        timeout: float = DEFAULT_CREATE_TIMEOUT_SECONDS,
        ctx: Context | None = None,
    ) -> None:
        self._bypass("create")

    def collect_logs(self, ctx: Context | None = None) -> None:
        self._bypass("collect_logs")

    def delete(self, ctx: Context | None = None) -> None:
        self._bypass("delete")


def new_provider(
    artifact_dir: str | Path,
    runtime: ClusterRuntime | None = None,
    environ: Mapping[str, str] | None = None,
    node_image: str | None = None,
    retain: bool = False,
) -> ClusterProvider:
    """Build a provider for a caller that does not use the shared cluster.

    The pre-existing cluster policy is honoured as for a non-shared caller:
    ``all`` adopts the external cluster, ``shared`` does not.

    Args:
        artifact_dir: Root directory for managed-cluster artifacts
        runtime: Cluster runtime for a managed cluster
        environ: Environment to read policy signals from, defaults to os.environ
        node_image: Node image override for a managed cluster
        retain: Keep nodes if creation fails

    Returns:
        An uncreated managed provider, or an unmanaged one
    """
    decision = resolve_policy(PolicySignals.from_env(environ), shared=False)
    if decision.adopt:
        return UnmanagedClusterProvider(decision.kubeconfig_path)
    return ManagedClusterProvider(artifact_dir, runtime=runtime, node_image=node_image, retain=retain)
