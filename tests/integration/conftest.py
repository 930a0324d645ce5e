"""Integration test fixtures and configuration."""

import os
import shutil

import pytest

from kte.core.config import ENV_FORCE_PREEXISTING


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless KTE_INTEGRATION=1 and a cluster can be obtained.

    Marks are applied at collection time so the session-scoped cluster
    fixtures are never set up for skipped tests.
    """
    if os.getenv("KTE_INTEGRATION") != "1":
        reason = "Integration tests disabled. Set KTE_INTEGRATION=1 to enable."
    elif shutil.which("kind") is None and not os.getenv(ENV_FORCE_PREEXISTING):
        reason = f"No cluster available: install kind or set {ENV_FORCE_PREEXISTING}"
    else:
        return

    skip = pytest.mark.skip(reason=reason)
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def skip_if_no_kind():
    """Skip tests that create their own cluster when kind is unavailable."""
    if shutil.which("kind") is None:
        pytest.skip("kind binary not found on PATH")
