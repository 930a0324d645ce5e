"""Cluster provider interface for test cluster lifecycle."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from kte.core.config import DEFAULT_CREATE_TIMEOUT_SECONDS
from kte.core.context import Context
from kte.core.models import ClusterTopology, ProviderVariant

if TYPE_CHECKING:
    from kte.clients.connection import ConnectionConfig
    from kte.clients.factory import ClientFactory


class ClusterProvider(ABC):
    """Abstract interface over one test cluster.

    Implementations are either self-managed (the provider created the cluster
    and owns its deletion) or externally supplied (the provider only connects).
    Callers branch on ``variant`` rather than on concrete types.
    """

    variant: ProviderVariant

    @property
    @abstractmethod
    def cluster_name(self) -> str:
        """Stable name identifying the cluster."""

    @property
    @abstractmethod
    def kubeconfig_path(self) -> str:
        """Path of the kubeconfig used for every connection to this cluster."""

    @property
    @abstractmethod
    def logs_dir(self) -> str | None:
        """Directory collected logs are written to, None if not applicable."""

    @abstractmethod
    def create(
        self,
        topology: ClusterTopology | None = None,
        timeout: float = DEFAULT_CREATE_TIMEOUT_SECONDS,
        ctx: Context | None = None,
    ) -> None:
        """Create the cluster.

        Args:
            topology: Node layout, or None for a single control-plane node
            timeout: Hard deadline in seconds for the cluster to become ready
            ctx: Cancellation context

        Raises:
            ClusterRuntimeError: If creation fails
        """

    @abstractmethod
    def collect_logs(self, ctx: Context | None = None) -> None:
        """Export cluster logs into ``logs_dir``.

        Raises:
            ClusterRuntimeError: If log collection fails
        """

    @abstractmethod
    def delete(self, ctx: Context | None = None) -> None:
        """Delete the cluster.

        Raises:
            ClusterDeletionError: If a self-managed cluster could not be deleted
        """

    def new_connection_config(self, context: str | None = None) -> ConnectionConfig:
        """Load a connection config strictly from ``kubeconfig_path``.

        Args:
            context: Explicit kubeconfig context, defaults to the file's current-context

        Returns:
            Connection config for this cluster

        Raises:
            ClientConstructionError: If the kubeconfig is missing or malformed
        """
        from kte.clients.connection import ConnectionConfig

        return ConnectionConfig.from_kubeconfig(self.kubeconfig_path, context=context)

    def new_client_factory(self, context: str | None = None) -> ClientFactory:
        """Build a client factory for this cluster."""
        from kte.clients.factory import ClientFactory

        return ClientFactory(self.new_connection_config(context=context))
