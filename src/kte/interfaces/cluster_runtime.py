"""Cluster runtime interface for node bring-up and teardown."""

from abc import ABC, abstractmethod
from pathlib import Path

from kte.core.context import Context
from kte.core.models import ClusterTopology


class ClusterRuntime(ABC):
    """Abstract interface for the tool that actually creates cluster nodes.

    KTE never brings up nodes itself. A runtime (kind today) is handed a
    name, a topology and an output path and is trusted to produce a reachable
    API server and a kubeconfig for it.
    """

    @abstractmethod
    def create(
        self,
        name: str,
        topology: ClusterTopology | None,
        kubeconfig_path: Path,
        wait_timeout: float,
        ctx: Context,
        config_path: Path | None = None,
        node_image: str | None = None,
        retain: bool = False,
    ) -> None:
        """Create a cluster and block until its control plane is ready.

        Args:
            name: Cluster name
            topology: Node layout, or None for the runtime default
            kubeconfig_path: Where to write the cluster's kubeconfig
            wait_timeout: Seconds to wait for the control plane to become ready
            ctx: Cancellation context
            config_path: Where to render the topology for the runtime
            node_image: Node image override
            retain: Keep nodes around if creation fails

        Raises:
            ClusterRuntimeError: If creation fails
            OperationCancelledError: If ctx is cancelled first
        """

    @abstractmethod
    def collect_logs(self, name: str, output_dir: Path, ctx: Context) -> None:
        """Export node and component logs into ``output_dir``.

        Raises:
            ClusterRuntimeError: If log export fails
        """

    @abstractmethod
    def delete(self, name: str, kubeconfig_path: Path | None, ctx: Context) -> None:
        """Delete a cluster and remove its entry from ``kubeconfig_path``.

        Raises:
            ClusterRuntimeError: If deletion fails
        """

    @abstractmethod
    def list(self, ctx: Context) -> list[str]:
        """Return the names of all clusters known to the runtime.

        Raises:
            ClusterRuntimeError: If listing fails
        """
