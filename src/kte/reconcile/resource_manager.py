"""Server-side apply of desired object sets with convergence waits."""

from __future__ import annotations

from collections.abc import Iterable
from typing import IO, Any

from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_delay,
    stop_any,
    wait_fixed,
)

from kte.core.config import FIELD_MANAGER
from kte.core.context import Context, ensure_context
from kte.core.exceptions import (
    ApplyError,
    ConfigurationError,
    ConvergenceTimeoutError,
    OperationCancelledError,
)
from kte.core.models import ApplyPhase, ChangeAction, ChangeSet, ObjectRef, WaitPolicy
from kte.reconcile.objects import check_unique, normalize, read_objects
from kte.reconcile.status import compute_status
from kte.utils.logging import get_logger, log_error

logger = get_logger(__name__)

# Kinds that other objects in the same set may depend on; applied and
# awaited before everything else.
CLUSTER_DEFINITION_KINDS = frozenset({"CustomResourceDefinition", "Namespace"})

DEFINITIONS_WAIT_POLICY = WaitPolicy(interval=1.0, timeout=30.0)

DEFAULT_NAMESPACE = "default"


class ResourceManager:
    """Applies object sets to one cluster through a dynamic client."""

    def __init__(
        self,
        dynamic_client: DynamicClient,
        default_namespace: str | None = None,
        field_manager: str = FIELD_MANAGER,
    ):
        """Initialize resource manager.

        Args:
            dynamic_client: Dynamic client bound to the target cluster
            default_namespace: Namespace for namespaced objects that omit one
            field_manager: Server-side apply field manager name
        """
        self.client = dynamic_client
        self.default_namespace = default_namespace or DEFAULT_NAMESPACE
        self.field_manager = field_manager

    def normalize(self, objects: Iterable[Any]) -> list[dict[str, Any]]:
        """Normalize a desired object set without applying it.

        Raises:
            ConfigurationError: On invalid input
        """
        return normalize(objects)

    def apply(
        self,
        objects: Iterable[Any],
        wait_policy: WaitPolicy | None = None,
        ctx: Context | None = None,
    ) -> ChangeSet:
        """Apply a desired object set and optionally wait for convergence.

        CustomResourceDefinitions and Namespaces are applied first and
        awaited, then the discovery cache is refreshed before the remaining
        objects are applied, so one call may carry both a CRD and its
        custom resources.

        Args:
            objects: Dicts, typed models, ResourceInstances or list objects
            wait_policy: Wait for every applied object to be ready; None skips waiting
            ctx: Cancellation context

        Returns:
            ChangeSet recording one action per applied object

        Raises:
            ConfigurationError: If the object set is invalid or two objects resolve to
                the same namespaced identity (nothing is applied)
            ApplyError: If the API rejects an object; carries the partial change set
            ConvergenceTimeoutError: If objects are not ready within the wait policy
            OperationCancelledError: If ctx is cancelled; carries the partial change set
        """
        ctx = ensure_context(ctx)
        change_set = ChangeSet()

        try:
            desired = normalize(objects)
        except ConfigurationError:
            change_set.phase = ApplyPhase.FAILED
            raise
        change_set.phase = ApplyPhase.NORMALIZED
        logger.debug("objects_normalized", count=len(desired))

        try:
            self._assign_namespaces(desired)
            check_unique(desired)
            self._apply_staged(desired, change_set, ctx)
            change_set.phase = ApplyPhase.APPLIED
            for entry in change_set:
                logger.info("object_applied", object=str(entry.ref), action=entry.action.value)

            if wait_policy is not None:
                change_set.phase = ApplyPhase.WAITING
                self.wait_for_set(change_set.refs(), wait_policy, ctx=ctx, change_set=change_set)
                change_set.phase = ApplyPhase.CONVERGED

        except OperationCancelledError as e:
            change_set.phase = ApplyPhase.CANCELLED
            e.change_set = change_set
            logger.warning("apply_cancelled", applied=len(change_set))
            raise
        except ConvergenceTimeoutError as e:
            change_set.phase = ApplyPhase.TIMED_OUT
            e.change_set = change_set
            raise
        except ConfigurationError:
            change_set.phase = ApplyPhase.FAILED
            raise
        except ApplyError as e:
            change_set.phase = ApplyPhase.FAILED
            e.change_set = change_set
            raise

        return change_set

    def apply_manifest(
        self,
        stream: IO[bytes] | IO[str] | bytes | str,
        wait_policy: WaitPolicy | None = None,
        ctx: Context | None = None,
    ) -> ChangeSet:
        """Parse a multi-document YAML stream and apply it.

        Raises:
            ConfigurationError: If the stream cannot be parsed
        """
        return self.apply(read_objects(stream), wait_policy=wait_policy, ctx=ctx)

    def wait_for_set(
        self,
        refs: Iterable[ObjectRef],
        wait_policy: WaitPolicy,
        ctx: Context | None = None,
        change_set: ChangeSet | None = None,
    ) -> None:
        """Poll until every referenced object is ready.

        Args:
            refs: Objects to wait for
            wait_policy: Poll interval and timeout
            ctx: Cancellation context
            change_set: Change set to attach to a timeout error

        Raises:
            ConvergenceTimeoutError: Listing objects still pending at the deadline
            OperationCancelledError: If ctx is cancelled while waiting
            ApplyError: If reading an object fails
        """
        ctx = ensure_context(ctx)
        pending = list(refs)
        if not pending:
            return
        total = len(pending)
        wait_ctx = ctx.with_timeout(wait_policy.timeout)

        def poll() -> list[ObjectRef]:
            nonlocal pending
            ctx.raise_if_done("wait for objects")
            pending = [ref for ref in pending if not self._is_ready(ref)]
            return pending

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.debug(
                "waiting_for_objects",
                attempt=retry_state.attempt_number,
                pending=[str(ref) for ref in pending],
            )

        retrying = Retrying(
            stop=stop_any(stop_after_delay(wait_policy.timeout), lambda _: wait_ctx.done()),
            wait=wait_fixed(wait_policy.interval),
            retry=retry_if_result(bool),
            # Never sleeps past the wait deadline, whatever the interval.
            sleep=wait_ctx.sleep,
            before_sleep=before_sleep,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        remaining = retrying(poll)
        if not remaining:
            logger.debug("objects_ready", count=total)
            return

        ctx.raise_if_done("wait for objects")
        names = [str(ref) for ref in remaining]
        logger.error("convergence_timeout", pending=names, timeout=wait_policy.timeout)
        raise ConvergenceTimeoutError(
            f"Timed out after {wait_policy.timeout}s waiting for: {', '.join(names)}",
            pending=remaining,
            change_set=change_set,
        )

    def _apply_staged(self, desired: list[dict[str, Any]], change_set: ChangeSet, ctx: Context) -> None:
        definitions = [obj for obj in desired if obj["kind"] in CLUSTER_DEFINITION_KINDS]
        rest = [obj for obj in desired if obj["kind"] not in CLUSTER_DEFINITION_KINDS]

        definition_refs = [self._apply_one(obj, change_set, ctx) for obj in definitions]
        if definition_refs and rest:
            self.wait_for_set(definition_refs, DEFINITIONS_WAIT_POLICY, ctx=ctx)
            self.client.resources.invalidate_cache()

        for obj in rest:
            self._apply_one(obj, change_set, ctx)

    def _assign_namespaces(self, desired: list[dict[str, Any]]) -> None:
        """Default or drop ``metadata.namespace`` by the scope of each object's kind.

        Kinds defined by a CustomResourceDefinition in the same set take their
        scope from that definition; the rest are looked up through discovery.
        Kinds discovery does not know are left alone and fail when applied.
        """
        defined_scopes = {}
        for obj in desired:
            if obj["kind"] == "CustomResourceDefinition":
                spec = obj.get("spec") or {}
                names = spec.get("names") or {}
                defined_scopes[(spec.get("group"), names.get("kind"))] = spec.get("scope") == "Namespaced"

        for obj in desired:
            ref = ObjectRef.from_object(obj)
            namespaced = defined_scopes.get((ref.group, ref.kind))
            if namespaced is None:
                try:
                    namespaced = self.client.resources.get(api_version=ref.api_version, kind=ref.kind).namespaced
                except (ResourceNotFoundError, ResourceNotUniqueError):
                    continue
                except Exception as e:
                    log_error(logger, "discovery_failed", e, api_version=ref.api_version, kind=ref.kind)
                    raise ApplyError(f"Failed to discover {ref.api_version} {ref.kind}: {e}") from e
            self._set_namespace(obj, namespaced)

    def _set_namespace(self, obj: dict[str, Any], namespaced: bool) -> None:
        metadata = obj["metadata"]
        if namespaced:
            metadata["namespace"] = metadata.get("namespace") or self.default_namespace
        else:
            metadata.pop("namespace", None)

    def _resolve(self, ref: ObjectRef):
        try:
            return self.client.resources.get(api_version=ref.api_version, kind=ref.kind)
        except (ResourceNotFoundError, ResourceNotUniqueError) as e:
            log_error(logger, "resource_type_not_found", e, api_version=ref.api_version, kind=ref.kind)
            raise ApplyError(f"No API resource for {ref.api_version} {ref.kind}: {e}") from e
        except Exception as e:
            log_error(logger, "discovery_failed", e, api_version=ref.api_version, kind=ref.kind)
            raise ApplyError(f"Failed to discover {ref.api_version} {ref.kind}: {e}") from e

    def _read(self, resource, ref: ObjectRef) -> dict[str, Any] | None:
        try:
            live = self.client.get(resource, name=ref.name, namespace=ref.namespace or None)
        except NotFoundError:
            return None
        except DynamicApiError as e:
            log_error(logger, "get_object_failed", e, object=str(ref), status=e.status)
            raise ApplyError(f"Failed to read {ref}: {e.reason}") from e
        except Exception as e:
            # Transport failures (urllib3) surface as plain exceptions.
            log_error(logger, "get_object_failed", e, object=str(ref))
            raise ApplyError(f"Failed to read {ref}: {e}") from e
        return live.to_dict()

    def _apply_one(self, obj: dict[str, Any], change_set: ChangeSet, ctx: Context) -> ObjectRef:
        ctx.raise_if_done("apply")
        resource = self._resolve(ObjectRef.from_object(obj))
        self._set_namespace(obj, resource.namespaced)
        ref = ObjectRef.from_object(obj)

        before = self._read(resource, ref)
        try:
            applied = self.client.server_side_apply(
                resource,
                body=obj,
                name=ref.name,
                namespace=ref.namespace or None,
                field_manager=self.field_manager,
                force_conflicts=True,
            )
        except DynamicApiError as e:
            log_error(logger, "apply_object_failed", e, object=str(ref), status=e.status)
            raise ApplyError(f"Failed to apply {ref}: {e.reason}") from e
        except Exception as e:
            log_error(logger, "apply_object_failed", e, object=str(ref))
            raise ApplyError(f"Failed to apply {ref}: {e}") from e

        if before is None:
            action = ChangeAction.CREATED
        else:
            previous = (before.get("metadata") or {}).get("resourceVersion")
            current = (applied.to_dict().get("metadata") or {}).get("resourceVersion")
            action = ChangeAction.UNCHANGED if previous == current else ChangeAction.CONFIGURED

        change_set.add(ref, action)
        return ref

    def _is_ready(self, ref: ObjectRef) -> bool:
        live = self._read(self._resolve(ref), ref)
        if live is None:
            logger.debug("object_not_found", object=str(ref))
            return False

        status = compute_status(live)
        if not status.ready:
            logger.debug("object_not_ready", object=str(ref), reason=status.message)
        return status.ready
