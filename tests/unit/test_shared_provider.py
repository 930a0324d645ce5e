"""Unit tests for the process-wide shared cluster provider.

Tests cover:
- OnceCell memoization of values and errors under concurrency
- Lazy shared cluster creation and adoption of pre-existing clusters
- Per-call isolation override
- Teardown and reset semantics
"""

from __future__ import annotations

import importlib
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from kte.core.config import SharedClusterConfig
from kte.core.exceptions import ClusterDeletionError, ClusterRuntimeError
from kte.core.models import ClusterState, ClusterTopology
from kte.provider.kind import ManagedClusterProvider, UnmanagedClusterProvider
from kte.provider.policy import PolicySignals
from kte.provider.shared import OnceCell, SharedProviderRegistry

shared_module = importlib.import_module("kte.provider.shared")


class SignalBox:
    """Mutable policy environment for a registry under test."""

    def __init__(self) -> None:
        self.signals = PolicySignals()

    def __call__(self) -> PolicySignals:
        return self.signals


@pytest.fixture
def signals() -> SignalBox:
    return SignalBox()


@pytest.fixture
def registry(tmp_path: Path, fake_runtime, signals: SignalBox) -> SharedProviderRegistry:
    return SharedProviderRegistry(
        runtime_factory=lambda: fake_runtime,
        signals_reader=signals,
        settings=SharedClusterConfig(artifact_dir=str(tmp_path), create_timeout_seconds=30),
    )


class TestOnceCell:
    """Tests for OnceCell."""

    def test_value_memoized(self) -> None:
        cell: OnceCell[int] = OnceCell()
        calls = []

        def init() -> int:
            calls.append(1)
            return 42

        assert cell.get_or_init(init) == 42
        assert cell.get_or_init(init) == 42
        assert len(calls) == 1
        assert cell.initialized

    def test_error_memoized(self) -> None:
        """Test every caller sees the initializer's error and init never re-runs."""
        cell: OnceCell[int] = OnceCell()
        calls = []

        def init() -> int:
            calls.append(1)
            raise ClusterRuntimeError("creation failed")

        for _ in range(3):
            with pytest.raises(ClusterRuntimeError, match="creation failed"):
                cell.get_or_init(init)

        assert len(calls) == 1

    def test_concurrent_callers_share_one_init(self) -> None:
        """Test racing first callers block on a single initializer."""
        cell: OnceCell[object] = OnceCell()
        calls = []
        barrier = threading.Barrier(8)
        results = []

        def init() -> object:
            calls.append(1)
            time.sleep(0.05)
            return object()

        def worker() -> None:
            barrier.wait()
            results.append(cell.get_or_init(init))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert len(results) == 8
        assert all(result is results[0] for result in results)


class TestSharedProviderRegistryGet:
    """Tests for SharedProviderRegistry.get."""

    def test_creates_managed_cluster_once(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        first = registry.get()
        second = registry.get()

        assert first is second
        assert isinstance(first, ManagedClusterProvider)
        assert first.state == ClusterState.READY
        assert [call[0] for call in fake_runtime.calls] == ["create"]
        assert fake_runtime.create_kwargs["wait_timeout"] == 30

    def test_applies_settings(self, tmp_path: Path, fake_runtime, signals: SignalBox) -> None:
        topology = ClusterTopology.with_workers(1)
        registry = SharedProviderRegistry(
            runtime_factory=lambda: fake_runtime,
            signals_reader=signals,
            settings=SharedClusterConfig(
                artifact_dir=str(tmp_path / "artifacts"),
                node_image="kindest/node:v1.29.2",
                topology=topology,
            ),
        )

        provider = registry.get()

        assert provider.kubeconfig_path.startswith(str(tmp_path / "artifacts"))
        assert fake_runtime.create_kwargs["node_image"] == "kindest/node:v1.29.2"
        assert fake_runtime.create_kwargs["topology"] == topology

    def test_concurrent_first_use_creates_one_cluster(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        """Test N racing callers share one cluster."""
        original_create = fake_runtime.create

        def slow_create(*args, **kwargs):
            time.sleep(0.05)
            return original_create(*args, **kwargs)

        fake_runtime.create = slow_create
        barrier = threading.Barrier(6)
        results = []

        def worker() -> None:
            barrier.wait()
            results.append(registry.get())

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(fake_runtime.clusters) == 1
        assert len(results) == 6
        assert all(result is results[0] for result in results)

    def test_creation_failure_is_memoized(self, tmp_path: Path, failing_runtime, signals: SignalBox) -> None:
        """Test a failed shared cluster fails every caller without retrying."""
        registry = SharedProviderRegistry(
            runtime_factory=lambda: failing_runtime,
            signals_reader=signals,
            settings=SharedClusterConfig(artifact_dir=str(tmp_path)),
        )

        for _ in range(2):
            with pytest.raises(ClusterRuntimeError, match="boom"):
                registry.get()

        assert [call[0] for call in failing_runtime.calls] == ["create"]
        assert registry.initialized

    def test_failed_cluster_is_cleaned_up(self, tmp_path: Path, failing_runtime, signals: SignalBox) -> None:
        """Test delete removes a cluster whose creation failed, then allows a retry."""
        registry = SharedProviderRegistry(
            runtime_factory=lambda: failing_runtime,
            signals_reader=signals,
            settings=SharedClusterConfig(artifact_dir=str(tmp_path)),
        )
        with pytest.raises(ClusterRuntimeError):
            registry.get()

        registry.delete()
        assert [call[0] for call in failing_runtime.calls] == ["create", "delete"]
        assert not registry.initialized

        del failing_runtime.fail["create"]
        assert registry.get().state == ClusterState.READY

    def test_delete_after_early_failure_allows_retry(
        self, tmp_path: Path, fake_runtime, signals: SignalBox
    ) -> None:
        """Test a failure before any cluster existed does not wedge the registry."""
        attempts = []

        def runtime_factory():
            attempts.append(1)
            if len(attempts) == 1:
                raise ClusterRuntimeError("kind binary not found")
            return fake_runtime

        registry = SharedProviderRegistry(
            runtime_factory=runtime_factory,
            signals_reader=signals,
            settings=SharedClusterConfig(artifact_dir=str(tmp_path)),
        )
        with pytest.raises(ClusterRuntimeError, match="kind binary"):
            registry.get()

        registry.delete()
        provider = registry.get()

        assert len(attempts) == 2
        assert provider.state == ClusterState.READY
        assert fake_runtime.clusters == [provider.cluster_name]

    def test_adopts_preexisting_cluster(self, registry: SharedProviderRegistry, fake_runtime, signals: SignalBox) -> None:
        signals.signals = PolicySignals(force_preexisting="shared", preexisting_kubeconfig="/k/config")

        provider = registry.get()

        assert isinstance(provider, UnmanagedClusterProvider)
        assert provider.kubeconfig_path == "/k/config"
        assert fake_runtime.calls == []

    def test_policy_misconfiguration_creates_managed(
        self, registry: SharedProviderRegistry, fake_runtime, signals: SignalBox
    ) -> None:
        signals.signals = PolicySignals(force_preexisting="all")

        assert isinstance(registry.get(), ManagedClusterProvider)
        assert len(fake_runtime.clusters) == 1

    def test_isolation_returns_private_cluster(
        self, registry: SharedProviderRegistry, fake_runtime, signals: SignalBox
    ) -> None:
        """Test the isolation override is read on every call."""
        shared = registry.get()

        signals.signals = PolicySignals(force_isolated="")
        isolated = registry.get()

        assert isolated is not shared
        assert isinstance(isolated, ManagedClusterProvider)
        assert isolated.cluster_name != shared.cluster_name
        assert len(fake_runtime.clusters) == 2

        signals.signals = PolicySignals(force_isolated="all")
        assert registry.get() is shared

    def test_is_shared(self, registry: SharedProviderRegistry, signals: SignalBox) -> None:
        shared = registry.get()
        signals.signals = PolicySignals(force_isolated="")
        isolated = registry.get()

        assert registry.is_shared(shared)
        assert not registry.is_shared(isolated)

    def test_default_artifact_dir_is_temporary(self, fake_runtime, signals: SignalBox, tmp_path: Path) -> None:
        registry = SharedProviderRegistry(runtime_factory=lambda: fake_runtime, signals_reader=signals)

        with patch("kte.provider.shared.tempfile.mkdtemp", return_value=str(tmp_path)) as mock_mkdtemp:
            provider = registry.get()

        mock_mkdtemp.assert_called_once_with(prefix="kte-kind-shared-provider-")
        assert provider.kubeconfig_path.startswith(str(tmp_path))


class TestSharedProviderRegistryTeardown:
    """Tests for collect_logs, logs_dir and delete."""

    def test_noop_before_first_use(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        registry.collect_logs()
        registry.delete()

        assert registry.logs_dir() is None
        assert fake_runtime.calls == []

    def test_collect_logs(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        provider = registry.get()

        registry.collect_logs()

        assert registry.logs_dir() == provider.logs_dir
        assert ("collect_logs", provider.cluster_name) in fake_runtime.calls

    def test_delete_resets(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        """Test the next get after delete creates a fresh cluster."""
        first = registry.get()

        registry.delete()
        second = registry.get()

        assert first.state == ClusterState.DELETED
        assert second is not first
        assert fake_runtime.clusters == [second.cluster_name]

    def test_delete_failure_keeps_provider(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        provider = registry.get()
        fake_runtime.fail["delete"] = ClusterRuntimeError("docker unavailable")

        with pytest.raises(ClusterDeletionError):
            registry.delete()

        assert registry.initialized
        assert registry.get() is provider

        del fake_runtime.fail["delete"]
        registry.delete()
        assert not registry.initialized

    def test_delete_adopted_cluster_is_bypassed(
        self, registry: SharedProviderRegistry, fake_runtime, signals: SignalBox
    ) -> None:
        signals.signals = PolicySignals(force_preexisting="all", preexisting_kubeconfig="/k/config")
        registry.get()

        registry.delete()

        assert fake_runtime.calls == []
        assert not registry.initialized


class TestModuleHelpers:
    """Tests for the module-level shared helpers."""

    def test_helpers_use_default_registry(self, registry: SharedProviderRegistry, fake_runtime) -> None:
        with patch.object(shared_module, "_default_registry", registry):
            provider = shared_module.shared()
            assert shared_module.shared_logs_dir() == provider.logs_dir

            shared_module.shared_collect_logs()
            shared_module.shared_delete()

        assert [call[0] for call in fake_runtime.calls] == ["create", "collect_logs", "delete"]

    def test_configure_shared(self, registry: SharedProviderRegistry) -> None:
        settings = SharedClusterConfig(node_image="kindest/node:v1.30.0")

        with patch.object(shared_module, "_default_registry", registry):
            shared_module.configure_shared(settings)
            assert shared_module.default_registry() is registry

        assert registry.settings is settings
