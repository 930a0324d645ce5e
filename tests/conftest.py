"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import (
    NotFoundError,
    ResourceNotFoundError,
    UnprocessibleEntityError,
)

from kte.core.context import Context
from kte.core.exceptions import ClusterRuntimeError
from kte.core.models import ClusterTopology
from kte.interfaces.cluster_runtime import ClusterRuntime

pytest_plugins = ["pytester"]


KUBECONFIG_TEMPLATE = """\
apiVersion: v1
kind: Config
clusters:
  - name: kind-test
    cluster:
      server: https://127.0.0.1:6443
      insecure-skip-tls-verify: true
  - name: other
    cluster:
      server: https://10.0.0.1:6443
      insecure-skip-tls-verify: true
users:
  - name: kind-test
    user:
      token: test-token
contexts:
  - name: kind-test
    context:
      cluster: kind-test
      user: kind-test
  - name: other
    context:
      cluster: other
      user: kind-test
current-context: kind-test
"""


def write_kubeconfig(path: Path) -> Path:
    """Write a token-based kubeconfig with two contexts."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(KUBECONFIG_TEMPLATE)
    return path


@pytest.fixture
def kubeconfig_file(tmp_path: Path) -> Path:
    """Kubeconfig with contexts 'kind-test' (current) and 'other'."""
    return write_kubeconfig(tmp_path / "kubeconfig")


# ==============================================================================
# Cluster runtime fake
# ==============================================================================


class FakeClusterRuntime(ClusterRuntime):
    """In-memory cluster runtime recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.clusters: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.create_kwargs: dict[str, Any] = {}

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise self.fail[operation]

    def create(
        self,
        name: str,
        topology: ClusterTopology | None,
        kubeconfig_path: Path,
        wait_timeout: float,
        ctx: Context,
        config_path: Path | None = None,
        node_image: str | None = None,
        retain: bool = False,
    ) -> None:
        self.calls.append(("create", name))
        self.create_kwargs = {
            "topology": topology,
            "wait_timeout": wait_timeout,
            "ctx": ctx,
            "config_path": config_path,
            "node_image": node_image,
            "retain": retain,
        }
        self._maybe_fail("create")
        write_kubeconfig(kubeconfig_path)
        self.clusters.append(name)

    def collect_logs(self, name: str, output_dir: Path, ctx: Context) -> None:
        self.calls.append(("collect_logs", name))
        self._maybe_fail("collect_logs")
        output_dir.mkdir(parents=True, exist_ok=True)

    def delete(self, name: str, kubeconfig_path: Path | None, ctx: Context) -> None:
        self.calls.append(("delete", name))
        self._maybe_fail("delete")
        if name in self.clusters:
            self.clusters.remove(name)

    def list(self, ctx: Context) -> list[str]:
        return list(self.clusters)


@pytest.fixture
def fake_runtime() -> FakeClusterRuntime:
    return FakeClusterRuntime()


@pytest.fixture
def failing_runtime() -> FakeClusterRuntime:
    runtime = FakeClusterRuntime()
    runtime.fail["create"] = ClusterRuntimeError("kind command failed: boom")
    return runtime


# ==============================================================================
# Dynamic client fake
# ==============================================================================


class FakeResourceInstance:
    """Stand-in for kubernetes.dynamic.ResourceInstance."""

    def __init__(self, data: dict[str, Any]):
        self._data = copy.deepcopy(data)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class FakeResource:
    def __init__(self, api_version: str, kind: str, namespaced: bool):
        self.api_version = api_version
        self.kind = kind
        self.namespaced = namespaced


BUILTIN_RESOURCES = [
    ("v1", "Namespace", False),
    ("v1", "ConfigMap", True),
    ("v1", "Secret", True),
    ("v1", "Service", True),
    ("v1", "ServiceAccount", True),
    ("v1", "Pod", True),
    ("apps/v1", "Deployment", True),
    ("batch/v1", "Job", True),
    ("rbac.authorization.k8s.io/v1", "ClusterRole", False),
    ("rbac.authorization.k8s.io/v1", "ClusterRoleBinding", False),
    ("rbac.authorization.k8s.io/v1", "RoleBinding", True),
    ("apiextensions.k8s.io/v1", "CustomResourceDefinition", False),
]


class FakeDiscovery:
    def __init__(self, client: FakeDynamicClient):
        self._client = client
        self._resources = {
            (api_version, kind): FakeResource(api_version, kind, namespaced)
            for api_version, kind, namespaced in BUILTIN_RESOURCES
        }
        self.invalidations = 0

    def get(self, api_version: str, kind: str) -> FakeResource:
        try:
            return self._resources[(api_version, kind)]
        except KeyError:
            raise ResourceNotFoundError(f"No matches found for {{'api_version': '{api_version}', 'kind': '{kind}'}}") from None

    def invalidate_cache(self) -> None:
        """Rediscover: custom kinds become visible once their CRD exists."""
        self.invalidations += 1
        for obj in self._client.objects.values():
            if obj["kind"] != "CustomResourceDefinition":
                continue
            spec = obj["spec"]
            for version in spec.get("versions", []):
                api_version = f"{spec['group']}/{version['name']}"
                self._resources[(api_version, spec["names"]["kind"])] = FakeResource(
                    api_version, spec["names"]["kind"], spec.get("scope") == "Namespaced"
                )


def _group(api_version: str) -> str:
    return api_version.rpartition("/")[0]


def _content(obj: dict[str, Any]) -> dict[str, Any]:
    """Fields the fake compares to decide whether an apply changed anything."""
    metadata = obj.get("metadata") or {}
    return {
        "labels": metadata.get("labels"),
        "annotations": metadata.get("annotations"),
        **{key: value for key, value in obj.items() if key not in ("metadata", "status", "apiVersion")},
    }


def _not_found(name: str) -> NotFoundError:
    return NotFoundError(ApiException(status=404, reason=f"{name} not found"))


class FakeDynamicClient:
    """In-memory dynamic client supporting server-side apply and get.

    Objects listed in ``stuck`` never report ready; everything else gets a
    ready status the moment it is applied.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self.resources = FakeDiscovery(self)
        self.applied: list[dict[str, Any]] = []
        self.apply_kwargs: list[dict[str, Any]] = []
        self.stuck: set[str] = set()
        self.reject: set[str] = set()
        self.get_calls = 0
        self._version = 0

    def _key(self, resource: FakeResource, name: str, namespace: str | None) -> tuple[str, str, str, str]:
        return (_group(resource.api_version), resource.kind, namespace or "", name)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _status(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        name = obj["metadata"]["name"]
        kind = obj["kind"]
        if name in self.stuck:
            return {"conditions": [{"type": "Ready", "status": "False", "message": "stuck"}]}
        if kind == "Namespace":
            return {"phase": "Active"}
        if kind == "CustomResourceDefinition":
            return {"conditions": [{"type": "Established", "status": "True"}]}
        if kind == "Deployment":
            replicas = obj.get("spec", {}).get("replicas", 1)
            return {
                "observedGeneration": obj["metadata"]["generation"],
                "replicas": replicas,
                "updatedReplicas": replicas,
                "readyReplicas": replicas,
                "availableReplicas": replicas,
            }
        return None

    def server_side_apply(
        self,
        resource: FakeResource,
        body: dict[str, Any],
        name: str,
        namespace: str | None = None,
        **kwargs: Any,
    ) -> FakeResourceInstance:
        self.applied.append(copy.deepcopy(body))
        self.apply_kwargs.append(dict(kwargs, name=name, namespace=namespace))
        if name in self.reject:
            raise UnprocessibleEntityError(ApiException(status=422, reason=f"{name} is invalid"))

        key = self._key(resource, name, namespace)
        existing = self.objects.get(key)
        if existing is not None and _content(existing) == _content(body):
            return FakeResourceInstance(existing)

        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        stored["metadata"]["generation"] = (existing or {}).get("metadata", {}).get("generation", 0) + 1
        status = self._status(stored)
        if status is not None:
            stored["status"] = status
        self.objects[key] = stored
        return FakeResourceInstance(stored)

    def get(self, resource: FakeResource, name: str, namespace: str | None = None) -> FakeResourceInstance:
        self.get_calls += 1
        try:
            return FakeResourceInstance(self.objects[self._key(resource, name, namespace)])
        except KeyError:
            raise _not_found(name) from None

    def lookup(self, kind: str, name: str, namespace: str = "", group: str = "") -> dict[str, Any] | None:
        return self.objects.get((group, kind, namespace, name))


@pytest.fixture
def fake_dynamic_client() -> FakeDynamicClient:
    return FakeDynamicClient()

