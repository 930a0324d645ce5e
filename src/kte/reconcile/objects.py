"""Reading, converting and normalizing desired API objects."""

from __future__ import annotations

import copy
import re
from collections import Counter
from collections.abc import Iterable
from typing import IO, Any

import yaml
from kubernetes import client

from kte.core.exceptions import ConfigurationError
from kte.core.models import ObjectRef

# API group of kinds that typed models may omit apiVersion for. Kinds not
# listed here belong to the core group.
KIND_GROUPS: dict[str, str] = {
    "Deployment": "apps",
    "StatefulSet": "apps",
    "DaemonSet": "apps",
    "ReplicaSet": "apps",
    "ControllerRevision": "apps",
    "Job": "batch",
    "CronJob": "batch",
    "Role": "rbac.authorization.k8s.io",
    "RoleBinding": "rbac.authorization.k8s.io",
    "ClusterRole": "rbac.authorization.k8s.io",
    "ClusterRoleBinding": "rbac.authorization.k8s.io",
    "NetworkPolicy": "networking.k8s.io",
    "Ingress": "networking.k8s.io",
    "IngressClass": "networking.k8s.io",
    "PodDisruptionBudget": "policy",
    "StorageClass": "storage.k8s.io",
    "CustomResourceDefinition": "apiextensions.k8s.io",
    "ValidatingWebhookConfiguration": "admissionregistration.k8s.io",
    "MutatingWebhookConfiguration": "admissionregistration.k8s.io",
    "PriorityClass": "scheduling.k8s.io",
    "HorizontalPodAutoscaler": "autoscaling",
    "Lease": "coordination.k8s.io",
}

_TYPED_MODEL_NAME = re.compile(r"^V(\d+(?:(?:alpha|beta)\d+)?)([A-Z]\w*)$")

# Fields the API server owns; sending them in an apply patch causes conflicts.
_SERVER_METADATA_FIELDS = (
    "resourceVersion",
    "uid",
    "selfLink",
    "creationTimestamp",
    "generation",
    "managedFields",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
)

_POD_TEMPLATE_KINDS = frozenset(
    {"Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Job"}
)

_serializer: client.ApiClient | None = None


def _sanitize(obj: Any) -> Any:
    global _serializer
    if _serializer is None:
        _serializer = client.ApiClient()
    return _serializer.sanitize_for_serialization(obj)


def read_objects(stream: IO[bytes] | IO[str] | bytes | str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML (or JSON) stream into generic objects.

    Args:
        stream: File-like object or raw content

    Returns:
        Objects in document order; empty documents are skipped

    Raises:
        ConfigurationError: If the content is not valid YAML or a document is not a mapping
    """
    data = stream.read() if hasattr(stream, "read") else stream
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        documents = list(yaml.safe_load_all(data))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse manifest: {e}") from e

    objects = []
    for index, document in enumerate(documents):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ConfigurationError(
                f"Manifest document {index} is a {type(document).__name__}, expected a mapping"
            )
        objects.append(document)
    return objects


def _typed_defaults(obj: Any) -> tuple[str | None, str | None]:
    """Infer (apiVersion, kind) from a typed model class name like V1Deployment."""
    match = _TYPED_MODEL_NAME.match(type(obj).__name__)
    if not match:
        return None, None
    version, kind = match.groups()
    group = KIND_GROUPS.get(kind, "")
    return (f"{group}/v{version}" if group else f"v{version}"), kind


def to_unstructured(obj: Any) -> dict[str, Any]:
    """Convert one caller object into an independent generic dict.

    Dicts are deep-copied, typed kubernetes models are serialized (which
    builds new containers) and dynamic ``ResourceInstance`` objects are
    copied from their dict form, so later caller mutation is never observed.

    Raises:
        ConfigurationError: If the object type is not supported
    """
    if isinstance(obj, dict):
        return copy.deepcopy(obj)

    if hasattr(obj, "openapi_types"):
        data = _sanitize(obj)
        api_version, kind = _typed_defaults(obj)
        if api_version and not data.get("apiVersion"):
            data["apiVersion"] = api_version
        if kind and not data.get("kind"):
            data["kind"] = kind
        return data

    if hasattr(obj, "to_dict"):
        return copy.deepcopy(obj.to_dict())

    raise ConfigurationError(f"Unsupported object type: {type(obj).__name__}")


def is_list(obj: dict[str, Any]) -> bool:
    """True for ``*List`` objects carrying an ``items`` array."""
    return str(obj.get("kind", "")).endswith("List") and isinstance(obj.get("items"), list)


def flatten(objects: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Expand list objects into their members, one level deep.

    Members missing apiVersion/kind inherit them from the list (typed lists
    serialize items without type metadata).

    Raises:
        ConfigurationError: If a list contains another list
    """
    flat: list[dict[str, Any]] = []
    for obj in objects:
        if not is_list(obj):
            flat.append(obj)
            continue

        member_kind = obj["kind"][: -len("List")]
        for item in obj["items"]:
            item = to_unstructured(item)
            if is_list(item):
                raise ConfigurationError(
                    f"Nested list {item.get('kind')} inside {obj['kind']} is not supported"
                )
            if member_kind and not item.get("kind"):
                item["kind"] = member_kind
            if obj.get("apiVersion") and not item.get("apiVersion"):
                item["apiVersion"] = obj["apiVersion"]
            flat.append(item)
    return flat


def _default_port_protocols(ports: list[dict[str, Any]] | None) -> None:
    for port in ports or []:
        if isinstance(port, dict):
            port.setdefault("protocol", "TCP")


def _apply_defaults(obj: dict[str, Any]) -> None:
    kind = obj["kind"]
    spec = obj.get("spec")
    if not isinstance(spec, dict):
        return

    if kind == "Service" and obj["apiVersion"] == "v1":
        _default_port_protocols(spec.get("ports"))
        return

    if kind in _POD_TEMPLATE_KINDS:
        pod_spec = ((spec.get("template") or {}).get("spec")) or {}
        for key in ("initContainers", "containers"):
            for container in pod_spec.get(key) or []:
                _default_port_protocols(container.get("ports"))


def normalize_object(obj: dict[str, Any]) -> dict[str, Any]:
    """Normalize one generic object in place for a stable apply.

    Strips ``status`` and server-owned metadata and fills defaults the API
    server would otherwise add, so repeated applies compare equal.

    Raises:
        ConfigurationError: If apiVersion, kind or metadata.name is missing
    """
    if not obj.get("apiVersion") or not obj.get("kind"):
        raise ConfigurationError(f"Object is missing apiVersion or kind: {obj.get('metadata')}")

    metadata = obj.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ConfigurationError(
            f"{obj['kind']} object requires metadata.name for apply (generateName is not supported)"
        )

    obj.pop("status", None)
    for field_name in _SERVER_METADATA_FIELDS:
        metadata.pop(field_name, None)
    if not metadata.get("namespace"):
        metadata.pop("namespace", None)

    _apply_defaults(obj)
    return obj


def check_unique(objects: Iterable[dict[str, Any]]) -> None:
    """Ensure every object is addressable by (group, kind, namespace, name).

    Raises:
        ConfigurationError: If two objects share an identity
    """
    refs = [ObjectRef.from_object(obj) for obj in objects]
    counts = Counter(ref.identity for ref in refs)
    duplicates = sorted({str(ref) for ref in refs if counts[ref.identity] > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate objects in desired set: {', '.join(duplicates)}")


def normalize(objects: Iterable[Any]) -> list[dict[str, Any]]:
    """Convert, flatten, normalize and uniqueness-check a desired object set.

    Args:
        objects: Dicts, typed models, ResourceInstances or list objects

    Returns:
        Normalized generic objects, independent of the caller's objects

    Raises:
        ConfigurationError: On unsupported, incomplete, nested-list or duplicate input
    """
    converted = [to_unstructured(obj) for obj in objects]
    desired = [normalize_object(obj) for obj in flatten(converted)]
    check_unique(desired)
    return desired
