"""Interface definitions for KTE collaborators."""

from kte.interfaces.cluster_provider import ClusterProvider
from kte.interfaces.cluster_runtime import ClusterRuntime

__all__ = [
    "ClusterProvider",
    "ClusterRuntime",
]
