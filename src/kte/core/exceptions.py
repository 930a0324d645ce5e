"""Custom exceptions for KTE."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kte.core.models import ChangeSet, ObjectRef


class KteError(Exception):
    """Base exception for all KTE errors."""


class ConfigurationError(KteError):
    """Configuration-related errors."""


class KubernetesError(KteError):
    """Kubernetes operation failed."""


class ClientConstructionError(KteError):
    """A client could not be built from a connection config."""


class ClusterRuntimeError(KteError):
    """Cluster runtime (kind) operation failed."""


class ClusterLifecycleError(ClusterRuntimeError):
    """Lifecycle operation is not valid in the cluster's current state."""


class ClusterDeletionError(ClusterRuntimeError):
    """Cluster deletion failed; cluster resources may have leaked."""

    def __init__(self, message: str, cluster_name: str):
        """Initialize cluster deletion error.

        Args:
            message: Error message
            cluster_name: Name of the cluster that could not be deleted
        """
        super().__init__(message)
        self.cluster_name = cluster_name


class IdentityProvisioningError(KteError):
    """Creating a scoped identity failed at a specific step.

    Attributes:
        step: Name of the failed step (namespace, service-account, role-binding)
    """

    def __init__(self, message: str, step: str):
        """Initialize identity provisioning error.

        Args:
            message: Error message
            step: Name of the step that failed
        """
        super().__init__(message)
        self.step = step


class ApplyError(KteError):
    """Applying a desired object set failed.

    Attributes:
        change_set: Objects applied before the failure
    """

    def __init__(self, message: str, change_set: ChangeSet | None = None):
        """Initialize apply error.

        Args:
            message: Error message
            change_set: Partial change set recorded before the failure
        """
        super().__init__(message)
        self.change_set = change_set


class ConvergenceTimeoutError(ApplyError):
    """Applied objects did not become ready before the deadline.

    Attributes:
        pending: References of objects that never converged
    """

    def __init__(
        self,
        message: str,
        pending: list[ObjectRef],
        change_set: ChangeSet | None = None,
    ):
        """Initialize convergence timeout error.

        Args:
            message: Error message
            pending: Objects still not ready when the deadline elapsed
            change_set: Change set of the apply call that was waiting
        """
        super().__init__(message, change_set=change_set)
        self.pending = pending


class OperationCancelledError(KteError):
    """Operation stopped because its context was cancelled.

    Attributes:
        change_set: Objects applied before cancellation, when applicable
    """

    def __init__(self, message: str, change_set: ChangeSet | None = None):
        """Initialize cancellation error.

        Args:
            message: Error message
            change_set: Partial change set recorded before cancellation
        """
        super().__init__(message)
        self.change_set = change_set


class DeadlineExceededError(OperationCancelledError):
    """Operation stopped because its context deadline elapsed."""
