"""Core data models for KTE."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from kte.core.exceptions import ClusterLifecycleError, ConfigurationError

KIND_CONFIG_API_VERSION = "kind.x-k8s.io/v1alpha4"


# ==============================================================================
# Cluster topology (kind config)
# ==============================================================================


class NodeRole(str, Enum):
    """Role of a kind node."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class Node(BaseModel):
    """A single kind node."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    role: NodeRole = NodeRole.CONTROL_PLANE
    image: str | None = None
    labels: dict[str, str] | None = None


class Networking(BaseModel):
    """Cluster-wide kind networking options."""

    model_config = ConfigDict(populate_by_name=True)

    ip_family: str | None = Field(None, alias="ipFamily")
    api_server_address: str | None = Field(None, alias="apiServerAddress")
    api_server_port: int | None = Field(None, alias="apiServerPort")
    pod_subnet: str | None = Field(None, alias="podSubnet")
    service_subnet: str | None = Field(None, alias="serviceSubnet")
    disable_default_cni: bool | None = Field(None, alias="disableDefaultCNI")
    kube_proxy_mode: str | None = Field(None, alias="kubeProxyMode")


class ClusterTopology(BaseModel):
    """kind ``Cluster`` config: node roles and networking."""

    model_config = ConfigDict(populate_by_name=True)

    nodes: list[Node] = Field(default_factory=lambda: [Node()])
    networking: Networking | None = None
    feature_gates: dict[str, bool] | None = Field(None, alias="featureGates")

    @model_validator(mode="after")
    def _require_control_plane(self) -> ClusterTopology:
        if not any(node.role == NodeRole.CONTROL_PLANE.value for node in self.nodes):
            raise ValueError("cluster topology needs at least one control-plane node")
        return self

    @classmethod
    def with_workers(cls, workers: int) -> ClusterTopology:
        """Build a topology with one control-plane node and ``workers`` workers."""
        nodes = [Node(role=NodeRole.CONTROL_PLANE)]
        nodes.extend(Node(role=NodeRole.WORKER) for _ in range(workers))
        return cls(nodes=nodes)

    def to_kind_config(self) -> dict[str, Any]:
        """Render as a kind config document."""
        body = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return {"kind": "Cluster", "apiVersion": KIND_CONFIG_API_VERSION, **body}

    def to_yaml(self) -> str:
        """Render as kind config YAML."""
        return yaml.safe_dump(self.to_kind_config(), sort_keys=False)


# ==============================================================================
# Cluster handle and lifecycle
# ==============================================================================


class ProviderVariant(str, Enum):
    """Which kind of cluster provider owns a cluster."""

    MANAGED = "managed"
    UNMANAGED = "unmanaged"


class ClusterState(str, Enum):
    """Lifecycle state of a self-managed cluster."""

    PENDING = "pending"
    CREATING = "creating"
    READY = "ready"
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[ClusterState, frozenset[ClusterState]] = {
    ClusterState.PENDING: frozenset({ClusterState.CREATING}),
    ClusterState.CREATING: frozenset({ClusterState.READY, ClusterState.FAILED}),
    ClusterState.READY: frozenset({ClusterState.DELETING}),
    ClusterState.FAILED: frozenset({ClusterState.DELETING}),
    ClusterState.DELETING: frozenset({ClusterState.DELETED, ClusterState.FAILED}),
    ClusterState.DELETED: frozenset(),
}


@dataclass
class ClusterHandle:
    """One self-managed test cluster and its artifact layout."""

    name_prefix: str
    artifact_dir: Path
    cluster_id: uuid.UUID = field(default_factory=uuid.uuid4)
    state: ClusterState = ClusterState.PENDING
    node_image: str | None = None
    retain: bool = False

    @property
    def name(self) -> str:
        """Cluster name as known to kind."""
        return f"{self.name_prefix}{self.cluster_id}"

    @property
    def cluster_dir(self) -> Path:
        """Per-cluster artifact directory."""
        return self.artifact_dir / self.name

    @property
    def kubeconfig_path(self) -> Path:
        """Kubeconfig written by the cluster runtime."""
        return self.cluster_dir / "kubeconfig"

    @property
    def logs_dir(self) -> Path:
        """Directory that collected logs are exported into."""
        return self.cluster_dir / "logs"

    @property
    def kind_config_path(self) -> Path:
        """Rendered kind config used at creation time."""
        return self.cluster_dir / "kind-config.yaml"

    def require(self, operation: str, *states: ClusterState) -> None:
        """Raise unless the handle is in one of ``states``.

        Raises:
            ClusterLifecycleError: If the current state does not allow the operation
        """
        if self.state not in states:
            raise ClusterLifecycleError(
                f"cannot {operation} cluster {self.name} in state '{self.state.value}'"
            )

    def transition(self, target: ClusterState) -> None:
        """Move to ``target`` following the lifecycle state machine.

        Raises:
            ClusterLifecycleError: If the transition is not allowed
        """
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise ClusterLifecycleError(
                f"invalid transition for cluster {self.name}: "
                f"{self.state.value} -> {target.value}"
            )
        self.state = target


# ==============================================================================
# Reconciliation
# ==============================================================================


@dataclass(frozen=True)
class WaitPolicy:
    """Poll interval and deadline for convergence waits, in seconds."""

    interval: float = 2.0
    timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.interval <= 0 or self.timeout <= 0:
            raise ConfigurationError(
                f"wait policy needs positive interval and timeout, got {self.interval}/{self.timeout}"
            )


@dataclass(frozen=True)
class ObjectRef:
    """Address of one API object."""

    group: str
    version: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> ObjectRef:
        """Build a reference from a generic object."""
        api_version = obj.get("apiVersion", "")
        group, _, version = api_version.rpartition("/")
        metadata = obj.get("metadata") or {}
        return cls(
            group=group,
            version=version,
            kind=obj.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name") or "",
        )

    @property
    def api_version(self) -> str:
        """``group/version`` or bare version for the core group."""
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def identity(self) -> tuple[str, str, str, str]:
        """Version-independent identity (group, kind, namespace, name)."""
        return (self.group, self.kind, self.namespace, self.name)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class ChangeAction(str, Enum):
    """Action taken for one object during apply."""

    CREATED = "created"
    CONFIGURED = "configured"
    UNCHANGED = "unchanged"


class ApplyPhase(str, Enum):
    """Progress of one apply call."""

    PENDING = "pending"
    NORMALIZED = "normalized"
    APPLIED = "applied"
    WAITING = "waiting"
    CONVERGED = "converged"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ChangeSetEntry:
    """Outcome of applying one object."""

    ref: ObjectRef
    action: ChangeAction

    def __str__(self) -> str:
        return f"{self.ref} {self.action.value}"


@dataclass
class ChangeSet:
    """Record of the actions taken by one apply call."""

    entries: list[ChangeSetEntry] = field(default_factory=list)
    phase: ApplyPhase = ApplyPhase.PENDING

    def add(self, ref: ObjectRef, action: ChangeAction) -> ChangeSetEntry:
        """Append an entry and return it."""
        entry = ChangeSetEntry(ref=ref, action=action)
        self.entries.append(entry)
        return entry

    def refs(self) -> list[ObjectRef]:
        """References of every applied object, in apply order."""
        return [entry.ref for entry in self.entries]

    def by_action(self, action: ChangeAction) -> list[ChangeSetEntry]:
        """Entries that recorded ``action``."""
        return [entry for entry in self.entries if entry.action == action]

    def __iter__(self) -> Iterator[ChangeSetEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
