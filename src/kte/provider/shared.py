"""Process-wide shared cluster provider."""

from __future__ import annotations

import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Generic, TypeVar

from kte.clients.kind_client import KindClient
from kte.core.config import ENV_FORCE_ISOLATED, SharedClusterConfig
from kte.core.context import Context, ensure_context
from kte.interfaces.cluster_provider import ClusterProvider
from kte.interfaces.cluster_runtime import ClusterRuntime
from kte.provider.kind import ManagedClusterProvider, UnmanagedClusterProvider
from kte.provider.policy import (
    PolicyDecision,
    PolicySignals,
    resolve_policy,
    wants_isolation,
)
from kte.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "OnceCell",
    "PolicyDecision",
    "PolicySignals",
    "SharedProviderRegistry",
    "configure_shared",
    "default_registry",
    "resolve_policy",
    "shared",
    "shared_collect_logs",
    "shared_delete",
    "shared_logs_dir",
    "wants_isolation",
]


class OnceCell(Generic[T]):
    """Initialize-once latch that memoizes a value or the initialization error.

    Concurrent first callers block until the single initializer finishes;
    afterwards every caller gets the same value or the same exception.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._initialized = False
        self._value: T | None = None
        self._error: BaseException | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get_or_init(self, init: Callable[[], T]) -> T:
        """Return the memoized value, running ``init`` on first use.

        Raises:
            Exception: Whatever ``init`` raised, to every caller
        """
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    try:
                        self._value = init()
                    except Exception as e:
                        self._error = e
                    self._initialized = True

        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


class SharedProviderRegistry:
    """Owns the one shared cluster provider of this process.

    The provider is resolved lazily on first ``get``: an external cluster is
    adopted when the pre-existing policy says so, otherwise a managed cluster
    is created. The policy is evaluated once; only the isolation override is
    re-read on every call.
    """

    def __init__(
        self,
        runtime_factory: Callable[[], ClusterRuntime] = KindClient,
        signals_reader: Callable[[], PolicySignals] = PolicySignals.from_env,
        settings: SharedClusterConfig | None = None,
    ):
        """Initialize shared provider registry.

        Args:
            runtime_factory: Builds the cluster runtime for managed clusters
            signals_reader: Reads the current policy signals
            settings: Shared cluster settings
        """
        self.runtime_factory = runtime_factory
        self.signals_reader = signals_reader
        self.settings = settings or SharedClusterConfig()

        self._lock = threading.Lock()
        self._cell: OnceCell[ClusterProvider] = OnceCell()
        self._provider: ClusterProvider | None = None

    @property
    def initialized(self) -> bool:
        """True once a shared provider exists (even if its creation failed)."""
        return self._provider is not None

    def _artifact_dir(self) -> str:
        if self.settings.artifact_dir:
            path = Path(self.settings.artifact_dir).expanduser()
            path.mkdir(parents=True, exist_ok=True)
            return str(path)
        return tempfile.mkdtemp(prefix="kte-kind-shared-provider-")

    def _create_managed(
        self,
        ctx: Context,
        on_constructed: Callable[[ClusterProvider], None] | None = None,
    ) -> ManagedClusterProvider:
        provider = ManagedClusterProvider(
            self._artifact_dir(),
            runtime=self.runtime_factory(),
            node_image=self.settings.node_image,
            retain=self.settings.retain,
        )
        if on_constructed is not None:
            on_constructed(provider)
        provider.create(
            self.settings.topology,
            timeout=self.settings.create_timeout_seconds,
            ctx=ctx,
        )
        return provider

    def _remember(self, provider: ClusterProvider) -> None:
        self._provider = provider

    def _initialize(self, ctx: Context) -> ClusterProvider:
        logger.info("initializing_shared_provider")
        decision = resolve_policy(self.signals_reader(), shared=True)

        if decision.adopt:
            provider = UnmanagedClusterProvider(decision.kubeconfig_path)
            self._remember(provider)
            logger.info(
                "shared_provider_adopted",
                cluster_name=provider.cluster_name,
                kubeconfig=provider.kubeconfig_path,
                reason=decision.reason,
            )
            return provider

        # Remembered before create so a failed cluster can still be cleaned up.
        return self._create_managed(ctx, on_constructed=self._remember)

    def get(self, ctx: Context | None = None) -> ClusterProvider:
        """Return the shared provider, or a private one when isolation is requested.

        Args:
            ctx: Cancellation context for cluster creation

        Returns:
            The memoized shared provider, or a freshly created managed one

        Raises:
            ClusterRuntimeError: If creating the cluster failed (on every call)
        """
        ctx = ensure_context(ctx)
        with self._lock:
            cell = self._cell

        provider = cell.get_or_init(lambda: self._initialize(ctx))

        if wants_isolation(self.signals_reader()):
            logger.info("using_isolated_provider", variable=ENV_FORCE_ISOLATED)
            return self._create_managed(ctx)

        logger.info("using_shared_provider", cluster_name=provider.cluster_name)
        return provider

    def is_shared(self, provider: ClusterProvider) -> bool:
        """True if ``provider`` is the memoized shared one, not a private isolated cluster."""
        return provider is self._provider

    def collect_logs(self, ctx: Context | None = None) -> None:
        """Collect logs of the shared cluster; no-op before first use."""
        provider = self._provider
        if provider is None:
            return
        provider.collect_logs(ctx=ctx)

    def logs_dir(self) -> str | None:
        """Logs directory of the shared cluster, None before first use."""
        provider = self._provider
        if provider is None:
            return None
        return provider.logs_dir

    def delete(self, ctx: Context | None = None) -> None:
        """Delete the shared cluster and forget it.

        No-op before first use. An initialization that failed before any
        cluster existed is forgotten so the next ``get`` tries again. On
        failure the provider stays memoized so deletion can be retried.

        Raises:
            ClusterDeletionError: If a managed shared cluster could not be deleted
        """
        with self._lock:
            provider = self._provider
            if provider is None:
                if self._cell.initialized:
                    self._cell = OnceCell()
                    logger.info("shared_provider_reset")
                return

            provider.delete(ctx=ctx)
            self._provider = None
            self._cell = OnceCell()

        logger.info("shared_provider_cleared", cluster_name=provider.cluster_name)


_default_registry = SharedProviderRegistry()


def default_registry() -> SharedProviderRegistry:
    """Return the process-wide registry behind the ``shared*`` helpers."""
    return _default_registry


def configure_shared(settings: SharedClusterConfig) -> None:
    """Replace the shared cluster settings used on the next initialization."""
    _default_registry.settings = settings


def shared(ctx: Context | None = None) -> ClusterProvider:
    """Return the process-wide shared provider."""
    return _default_registry.get(ctx)


def shared_collect_logs(ctx: Context | None = None) -> None:
    """Collect shared cluster logs; no-op before first use."""
    _default_registry.collect_logs(ctx)


def shared_logs_dir() -> str | None:
    """Shared cluster logs directory, None before first use."""
    return _default_registry.logs_dir()


def shared_delete(ctx: Context | None = None) -> None:
    """Delete the shared cluster so the next ``shared()`` starts over."""
    _default_registry.delete(ctx)
