"""Cluster providers and the shared-provider coordinator."""

from kte.provider.kind import ManagedClusterProvider, UnmanagedClusterProvider, new_provider
from kte.provider.policy import PolicyDecision, PolicySignals, resolve_policy, wants_isolation
from kte.provider.shared import (
    OnceCell,
    SharedProviderRegistry,
    shared,
    shared_collect_logs,
    shared_delete,
    shared_logs_dir,
)

__all__ = [
    "ManagedClusterProvider",
    "OnceCell",
    "PolicyDecision",
    "PolicySignals",
    "SharedProviderRegistry",
    "UnmanagedClusterProvider",
    "new_provider",
    "resolve_policy",
    "shared",
    "shared_collect_logs",
    "shared_delete",
    "shared_logs_dir",
    "wants_isolation",
]
