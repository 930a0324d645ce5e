"""Apply desired object sets and wait for them to converge."""

from kte.reconcile.objects import normalize, read_objects
from kte.reconcile.resource_manager import ResourceManager
from kte.reconcile.status import ObjectStatus, compute_status

__all__ = [
    "ObjectStatus",
    "ResourceManager",
    "compute_status",
    "normalize",
    "read_objects",
]
