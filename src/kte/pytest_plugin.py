"""pytest fixtures for suites that need a Kubernetes cluster.

Registered through the ``pytest11`` entry point, so installing ``kte`` is
enough to make the fixtures available::

    def test_something(kte_scoped_identity):
        rm = kte_scoped_identity.new_resource_manager()
        rm.apply([...])
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from kte.clients.factory import ClientFactory
from kte.core.config import KteConfig
from kte.identity.provisioner import IdentityProvisioner, ScopedIdentity
from kte.interfaces.cluster_provider import ClusterProvider
from kte.provider.shared import (
    configure_shared,
    default_registry,
    shared,
    shared_collect_logs,
    shared_delete,
    shared_logs_dir,
)
from kte.utils.logging import get_logger

logger = get_logger(__name__)


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("kte", "kube-test-env")
    group.addoption(
        "--kte-keep-cluster",
        action="store_true",
        default=False,
        help="Do not delete the shared test cluster at the end of the session",
    )
    group.addoption(
        "--kte-config",
        default=None,
        help="Path to a KTE configuration file",
    )


def finalize_shared_cluster(keep: bool, collect_logs: bool) -> None:
    """End-of-session handling of the shared cluster.

    Args:
        keep: Leave the cluster running
        collect_logs: Export cluster logs before deleting (e.g. after failures)
    """
    if collect_logs:
        shared_collect_logs()
        logger.info("shared_cluster_logs_collected", logs_dir=shared_logs_dir())

    if keep:
        logger.info("shared_cluster_kept")
        return
    shared_delete()


def finalize_isolated_cluster(provider: ClusterProvider, keep: bool, collect_logs: bool) -> None:
    """End-of-session handling of a private cluster created under the isolation override.

    Deletion errors propagate so a leaked cluster fails the session.
    """
    if collect_logs:
        provider.collect_logs()
        logger.info("isolated_cluster_logs_collected", logs_dir=provider.logs_dir)

    if keep:
        logger.info("isolated_cluster_kept", cluster_name=provider.cluster_name)
        return
    provider.delete()


@pytest.fixture(scope="session")
def kte_config(pytestconfig: pytest.Config) -> KteConfig:
    """KTE configuration from ``--kte-config``, or defaults."""
    path = pytestconfig.getoption("kte_config")
    return KteConfig.from_file(path) if path else KteConfig()


@pytest.fixture(scope="session")
def kte_cluster(request: pytest.FixtureRequest, kte_config: KteConfig) -> Iterator[ClusterProvider]:
    """Shared cluster for the session, deleted at the end unless ``--kte-keep-cluster``.

    Under the isolation override the session gets a private cluster, which is
    deleted the same way.
    """
    configure_shared(kte_config.shared_cluster)
    provider = shared()
    isolated = not default_registry().is_shared(provider)
    yield provider

    keep = request.config.getoption("kte_keep_cluster")
    collect_logs = request.session.testsfailed > 0
    try:
        if isolated:
            finalize_isolated_cluster(provider, keep=keep, collect_logs=collect_logs)
    finally:
        finalize_shared_cluster(keep=keep, collect_logs=collect_logs)


@pytest.fixture(scope="session")
def kte_client_factory(kte_cluster: ClusterProvider) -> ClientFactory:
    """Client factory with the cluster's own (admin) credentials."""
    return kte_cluster.new_client_factory()


@pytest.fixture(scope="session")
def kte_identity_provisioner(kte_cluster: ClusterProvider) -> Iterator[IdentityProvisioner]:
    """Provisioner whose identities are all torn down at the end of the session."""
    provisioner = IdentityProvisioner(kte_cluster.new_connection_config())
    yield provisioner
    provisioner.cleanup()


@pytest.fixture
def kte_scoped_identity(kte_identity_provisioner: IdentityProvisioner) -> Iterator[ScopedIdentity]:
    """Fresh namespace and impersonated service account for one test."""
    identity = kte_identity_provisioner.new_scoped_identity()
    yield identity
    identity.cleanup()
