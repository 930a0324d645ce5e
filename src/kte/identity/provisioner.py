"""Namespace-scoped test identities with ordered teardown."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from kubernetes.client.models import V1ObjectMeta

from kte.clients.connection import ConnectionConfig
from kte.clients.kubernetes_client import KubernetesClient
from kte.core.context import Context, ensure_context
from kte.core.exceptions import IdentityProvisioningError
from kte.utils.logging import get_logger, log_error

if TYPE_CHECKING:
    from kte.clients.factory import ClientFactory
    from kte.reconcile.resource_manager import ResourceManager

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_GENERATE_NAME = "kte-"
ADMIN_CLUSTER_ROLE = "admin"


def service_account_user(namespace: str, name: str) -> str:
    """Fully-qualified user name of a service account."""
    return f"system:serviceaccount:{namespace}:{name}"


class TeardownKind(str, Enum):
    """Resource kinds a scoped identity is made of."""

    NAMESPACE = "namespace"
    SERVICE_ACCOUNT = "service-account"
    ROLE_BINDING = "role-binding"


@dataclass(frozen=True)
class TeardownStep:
    """One resource to delete during cleanup."""

    kind: TeardownKind
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind.value} {self.namespace}/{self.name}"
        return f"{self.kind.value} {self.name}"


class TeardownLedger:
    """Record of created resources that still need deleting, consumed back-to-front."""

    def __init__(self) -> None:
        self._steps: list[TeardownStep] = []
        self._lock = threading.Lock()

    def record(self, step: TeardownStep) -> None:
        with self._lock:
            self._steps.append(step)

    def steps(self) -> list[TeardownStep]:
        """Recorded steps in creation order."""
        with self._lock:
            return list(self._steps)

    def drain(self) -> list[TeardownStep]:
        """Remove every step and return them in deletion (reverse) order."""
        with self._lock:
            steps, self._steps = self._steps, []
        return list(reversed(steps))

    def restore(self, failed: Sequence[TeardownStep]) -> None:
        """Re-record steps that a drain could not delete.

        Args:
            failed: Steps in deletion order, as returned by run_teardown
        """
        with self._lock:
            self._steps.extend(reversed(failed))

    def discard(self, done: Iterable[TeardownStep]) -> None:
        """Forget steps that were deleted outside of a drain."""
        done = set(done)
        with self._lock:
            self._steps = [step for step in self._steps if step not in done]

    def __len__(self) -> int:
        return len(self._steps)


def _delete_step(client: KubernetesClient, step: TeardownStep) -> bool:
    if step.kind == TeardownKind.ROLE_BINDING:
        return client.delete_role_binding(step.name, step.namespace)
    if step.kind == TeardownKind.SERVICE_ACCOUNT:
        return client.delete_service_account(step.name, step.namespace)
    return client.delete_namespace(step.name)


def run_teardown(
    client: KubernetesClient,
    steps: Sequence[TeardownStep],
    ctx: Context | None = None,
) -> list[TeardownStep]:
    """Delete ``steps`` in the given order, making maximal progress.

    Not-found counts as success. Any other failure, API error or transport
    error alike, is logged and the remaining steps still run. Once ``ctx``
    is done no further deletes are issued and the remaining steps are
    reported as failed.

    Returns:
        Steps that could not be completed, in the order they were attempted
    """
    ctx = ensure_context(ctx)
    failed: list[TeardownStep] = []

    for index, step in enumerate(steps):
        if ctx.done():
            remaining = list(steps[index:])
            logger.warning("teardown_interrupted", remaining=[str(s) for s in remaining])
            failed.extend(remaining)
            break

        try:
            deleted = _delete_step(client, step)
        except Exception as e:
            log_error(logger, "teardown_step_failed", e, step=str(step))
            failed.append(step)
            continue

        logger.debug("teardown_step_done", step=str(step), already_absent=not deleted)

    return failed


@dataclass(frozen=True)
class ScopedIdentity:
    """A namespace, a service account and an admin role binding inside it.

    ``connection`` impersonates the service account, so clients built from it
    have full rights in ``namespace`` and nothing outside it.
    """

    namespace: str
    service_account: str
    role_binding: str
    connection: ConnectionConfig
    teardown: tuple[TeardownStep, ...]
    _client: KubernetesClient = field(repr=False, compare=False)
    _ledger: TeardownLedger = field(default_factory=TeardownLedger, repr=False, compare=False)

    @property
    def user(self) -> str:
        """Impersonated user name."""
        return service_account_user(self.namespace, self.service_account)

    def object_meta(self, name: str | None = None) -> V1ObjectMeta:
        """Metadata for a new object in this identity's namespace.

        Args:
            name: Explicit name; a generated ``<namespace>-`` name otherwise
        """
        if name:
            return V1ObjectMeta(name=name, namespace=self.namespace)
        return V1ObjectMeta(generate_name=f"{self.namespace}-", namespace=self.namespace)

    def new_client_factory(self) -> ClientFactory:
        """Client factory whose clients act as this identity."""
        from kte.clients.factory import ClientFactory

        return ClientFactory(self.connection)

    def new_resource_manager(self) -> ResourceManager:
        """Resource manager acting as this identity, defaulting to its namespace."""
        return self.new_client_factory().new_resource_manager(default_namespace=self.namespace)

    def cleanup(self, ctx: Context | None = None) -> list[TeardownStep]:
        """Delete role binding, service account and namespace, in that order.

        Safe to call repeatedly; resources already gone count as deleted.
        Deleted steps are dropped from the provisioner's ledger; failed ones
        stay there for the provisioner's own cleanup.

        Returns:
            Steps that failed (empty on full success)
        """
        logger.info("cleaning_up_scoped_identity", namespace=self.namespace)
        failed = run_teardown(self._client, self.teardown, ctx)
        self._ledger.discard(step for step in self.teardown if step not in failed)
        if failed:
            logger.warning(
                "scoped_identity_cleanup_incomplete",
                namespace=self.namespace,
                failed=[str(step) for step in failed],
            )
        return failed


class IdentityProvisioner:
    """Creates scoped identities in one cluster and tracks them for teardown."""

    def __init__(
        self,
        connection: ConnectionConfig,
        kubernetes_client: KubernetesClient | None = None,
        metadata_template: V1ObjectMeta | None = None,
    ):
        """Initialize identity provisioner.

        Args:
            connection: Privileged connection used to create identities
            kubernetes_client: Typed client, built from ``connection`` when omitted
            metadata_template: Namespace metadata template, defaults to generate_name "kte-"
        """
        self.connection = connection
        self.client = kubernetes_client or KubernetesClient(connection=connection)
        self.metadata_template = metadata_template or V1ObjectMeta(generate_name=DEFAULT_GENERATE_NAME)
        self.ledger = TeardownLedger()

    def _step(self, step: str, ctx: Context, call: Callable[[], T]) -> T:
        ctx.raise_if_done(f"create {step}")
        try:
            return call()
        except Exception as e:
            # KubernetesError for API failures, urllib3 errors for transport failures
            log_error(logger, "scoped_identity_step_failed", e, step=step)
            raise IdentityProvisioningError(f"Failed to create {step}: {e}", step=step) from e

    def new_scoped_identity(
        self,
        template: V1ObjectMeta | None = None,
        ctx: Context | None = None,
    ) -> ScopedIdentity:
        """Create a namespace, service account and role binding.

        Each created resource is recorded in the ledger as soon as it exists,
        so a failure part-way leaves nothing that ``cleanup`` would miss.

        Args:
            template: Namespace metadata, defaults to the provisioner's template
            ctx: Cancellation context

        Returns:
            ScopedIdentity impersonating the new service account

        Raises:
            IdentityProvisioningError: Naming the step that failed
            OperationCancelledError: If ctx is done before a step starts
        """
        ctx = ensure_context(ctx)
        meta = copy.deepcopy(template if template is not None else self.metadata_template)

        namespace = self._step("namespace", ctx, lambda: self.client.create_namespace(meta))
        namespace_name = namespace.metadata.name
        namespace_step = TeardownStep(TeardownKind.NAMESPACE, namespace_name)
        self.ledger.record(namespace_step)

        meta.namespace = namespace_name
        meta.generate_name = f"{namespace_name}-"

        service_account = self._step(
            "service-account",
            ctx,
            lambda: self.client.create_service_account(namespace_name, copy.deepcopy(meta)),
        )
        service_account_name = service_account.metadata.name
        service_account_step = TeardownStep(
            TeardownKind.SERVICE_ACCOUNT, service_account_name, namespace_name
        )
        self.ledger.record(service_account_step)

        role_binding = self._step(
            "role-binding",
            ctx,
            lambda: self.client.create_role_binding(
                namespace_name,
                copy.deepcopy(meta),
                service_account=service_account_name,
                cluster_role=ADMIN_CLUSTER_ROLE,
            ),
        )
        role_binding_step = TeardownStep(
            TeardownKind.ROLE_BINDING, role_binding.metadata.name, namespace_name
        )
        self.ledger.record(role_binding_step)

        user = service_account_user(namespace_name, service_account_name)
        identity = ScopedIdentity(
            namespace=namespace_name,
            service_account=service_account_name,
            role_binding=role_binding.metadata.name,
            connection=self.connection.with_impersonation(user),
            teardown=(role_binding_step, service_account_step, namespace_step),
            _client=self.client,
            _ledger=self.ledger,
        )

        logger.info("scoped_identity_created", namespace=namespace_name, user=user)
        return identity

    def cleanup(self, ctx: Context | None = None) -> list[TeardownStep]:
        """Tear down every recorded resource, newest first.

        Returns:
            Steps that failed (empty on full success)
        """
        steps = self.ledger.drain()
        if not steps:
            return []

        logger.info("cleaning_up_identities", steps=len(steps))
        failed = run_teardown(self.client, steps, ctx)
        if failed:
            self.ledger.restore(failed)
            logger.warning("identity_cleanup_incomplete", failed=[str(step) for step in failed])
        return failed
