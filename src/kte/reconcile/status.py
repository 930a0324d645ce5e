"""Readiness of live API objects.

Built-in workload kinds are judged from their replica counts and
``observedGeneration``; everything else falls back to the conventional
``Ready``/``Stalled``/``Reconciling`` conditions. Objects with no status at
all are considered ready once they exist.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ObjectStatus:
    """Readiness verdict for one live object."""

    ready: bool
    message: str = ""


READY = ObjectStatus(ready=True)


def _not_ready(message: str) -> ObjectStatus:
    return ObjectStatus(ready=False, message=message)


def get_condition(obj: dict[str, Any], condition_type: str) -> dict[str, Any] | None:
    """Return the status condition of ``condition_type``, if present."""
    for condition in (obj.get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition
    return None


def _condition_is(obj: dict[str, Any], condition_type: str, value: str = "True") -> bool:
    condition = get_condition(obj, condition_type)
    return condition is not None and condition.get("status") == value


def _generation_observed(obj: dict[str, Any]) -> ObjectStatus | None:
    generation = (obj.get("metadata") or {}).get("generation")
    observed = (obj.get("status") or {}).get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        return _not_ready(f"observed generation {observed} behind {generation}")
    return None


def _deployment_status(obj: dict[str, Any]) -> ObjectStatus:
    lagging = _generation_observed(obj)
    if lagging:
        return lagging
    if "observedGeneration" not in (obj.get("status") or {}):
        return _not_ready("not yet observed by controller")

    status = obj.get("status") or {}
    desired = (obj.get("spec") or {}).get("replicas", 1)
    for field_name in ("updatedReplicas", "readyReplicas", "availableReplicas"):
        if status.get(field_name, 0) < desired:
            return _not_ready(f"{field_name} {status.get(field_name, 0)}/{desired}")
    if status.get("replicas", 0) > desired:
        return _not_ready(f"waiting for {status['replicas'] - desired} old replicas to terminate")
    return READY


def _statefulset_status(obj: dict[str, Any]) -> ObjectStatus:
    lagging = _generation_observed(obj)
    if lagging:
        return lagging
    if "observedGeneration" not in (obj.get("status") or {}):
        return _not_ready("not yet observed by controller")

    status = obj.get("status") or {}
    desired = (obj.get("spec") or {}).get("replicas", 1)
    if status.get("readyReplicas", 0) < desired:
        return _not_ready(f"readyReplicas {status.get('readyReplicas', 0)}/{desired}")
    if status.get("currentReplicas", desired) < desired:
        return _not_ready(f"currentReplicas {status.get('currentReplicas')}/{desired}")
    if status.get("updateRevision") and status.get("currentRevision") != status.get("updateRevision"):
        return _not_ready("rolling update in progress")
    return READY


def _daemonset_status(obj: dict[str, Any]) -> ObjectStatus:
    lagging = _generation_observed(obj)
    if lagging:
        return lagging
    if "observedGeneration" not in (obj.get("status") or {}):
        return _not_ready("not yet observed by controller")

    status = obj.get("status") or {}
    desired = status.get("desiredNumberScheduled", 0)
    for field_name in ("currentNumberScheduled", "updatedNumberScheduled", "numberAvailable", "numberReady"):
        if status.get(field_name, 0) < desired:
            return _not_ready(f"{field_name} {status.get(field_name, 0)}/{desired}")
    return READY


def _replicaset_status(obj: dict[str, Any]) -> ObjectStatus:
    lagging = _generation_observed(obj)
    if lagging:
        return lagging

    status = obj.get("status") or {}
    desired = (obj.get("spec") or {}).get("replicas", 1)
    if status.get("readyReplicas", 0) < desired:
        return _not_ready(f"readyReplicas {status.get('readyReplicas', 0)}/{desired}")
    return READY


def _pod_status(obj: dict[str, Any]) -> ObjectStatus:
    phase = (obj.get("status") or {}).get("phase")
    if phase == "Succeeded":
        return READY
    if _condition_is(obj, "Ready"):
        return READY
    return _not_ready(f"pod phase {phase or 'unknown'}")


def _job_status(obj: dict[str, Any]) -> ObjectStatus:
    if _condition_is(obj, "Complete"):
        return READY
    if _condition_is(obj, "Failed"):
        return _not_ready("job failed")
    return _not_ready("job not complete")


def _pvc_status(obj: dict[str, Any]) -> ObjectStatus:
    phase = (obj.get("status") or {}).get("phase")
    if phase == "Bound":
        return READY
    return _not_ready(f"claim phase {phase or 'unknown'}")


def _service_status(obj: dict[str, Any]) -> ObjectStatus:
    if (obj.get("spec") or {}).get("type") != "LoadBalancer":
        return READY
    ingress = ((obj.get("status") or {}).get("loadBalancer") or {}).get("ingress")
    if ingress:
        return READY
    return _not_ready("load balancer has no ingress")


def _namespace_status(obj: dict[str, Any]) -> ObjectStatus:
    phase = (obj.get("status") or {}).get("phase")
    if phase in (None, "Active"):
        return READY
    return _not_ready(f"namespace phase {phase}")


def _crd_status(obj: dict[str, Any]) -> ObjectStatus:
    if _condition_is(obj, "Established"):
        return READY
    if _condition_is(obj, "NamesAccepted", "False"):
        return _not_ready("CRD names not accepted")
    return _not_ready("CRD not established")


def _generic_status(obj: dict[str, Any]) -> ObjectStatus:
    status = obj.get("status")
    if not status:
        return READY

    lagging = _generation_observed(obj)
    if lagging:
        return lagging

    if _condition_is(obj, "Stalled"):
        condition = get_condition(obj, "Stalled") or {}
        return _not_ready(f"stalled: {condition.get('message', '')}".strip())
    if _condition_is(obj, "Reconciling"):
        return _not_ready("reconciling")

    ready = get_condition(obj, "Ready")
    if ready is not None and ready.get("status") != "True":
        return _not_ready(ready.get("message") or f"Ready={ready.get('status')}")
    return READY


_BUILTIN: dict[tuple[str, str], Callable[[dict[str, Any]], ObjectStatus]] = {
    ("apps", "Deployment"): _deployment_status,
    ("apps", "StatefulSet"): _statefulset_status,
    ("apps", "DaemonSet"): _daemonset_status,
    ("apps", "ReplicaSet"): _replicaset_status,
    ("", "Pod"): _pod_status,
    ("", "PersistentVolumeClaim"): _pvc_status,
    ("", "Service"): _service_status,
    ("", "Namespace"): _namespace_status,
    ("batch", "Job"): _job_status,
    ("apiextensions.k8s.io", "CustomResourceDefinition"): _crd_status,
}


def compute_status(obj: dict[str, Any]) -> ObjectStatus:
    """Compute whether a live object has converged.

    Args:
        obj: Live object as a generic dict

    Returns:
        ObjectStatus with a human-readable reason when not ready
    """
    if (obj.get("metadata") or {}).get("deletionTimestamp"):
        return _not_ready("object is being deleted")

    group = str(obj.get("apiVersion", "")).rpartition("/")[0]
    handler = _BUILTIN.get((group, obj.get("kind", "")), _generic_status)
    return handler(obj)
