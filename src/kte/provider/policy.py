"""Environment-driven cluster selection policy."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from kte.core.config import (
    ENV_FORCE_ISOLATED,
    ENV_FORCE_ISOLATED_ALL,
    ENV_FORCE_PREEXISTING,
    ENV_FORCE_PREEXISTING_ALL,
    ENV_FORCE_PREEXISTING_SHARED,
    ENV_PREEXISTING_KUBECONFIG,
)
from kte.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PolicySignals:
    """Snapshot of the policy environment variables; None means unset."""

    force_isolated: str | None = None
    force_preexisting: str | None = None
    preexisting_kubeconfig: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PolicySignals:
        """Read signals from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ
        return cls(
            force_isolated=env.get(ENV_FORCE_ISOLATED),
            force_preexisting=env.get(ENV_FORCE_PREEXISTING),
            preexisting_kubeconfig=env.get(ENV_PREEXISTING_KUBECONFIG),
        )


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of policy resolution.

    Attributes:
        adopt: Use the externally supplied cluster instead of creating one
        kubeconfig_path: Kubeconfig of the external cluster when adopting
        reason: Why this decision was made, for logs
    """

    adopt: bool
    kubeconfig_path: str | None = None
    reason: str = ""


def resolve_policy(signals: PolicySignals, shared: bool) -> PolicyDecision:
    """Decide whether to adopt an external cluster or create a managed one.

    Both pre-existing signals must be set together. ``all`` adopts for every
    caller, ``shared`` adopts only for shared callers. Anything else is a
    misconfiguration that is logged and falls back to a managed cluster.

    Args:
        signals: Environment snapshot
        shared: Whether the caller is the shared-provider coordinator

    Returns:
        PolicyDecision
    """
    mode = signals.force_preexisting
    kubeconfig = signals.preexisting_kubeconfig

    if mode is None and kubeconfig is None:
        return PolicyDecision(adopt=False, reason="no pre-existing cluster configured")

    if kubeconfig is None:
        logger.warning(
            "preexisting_policy_incomplete",
            set_variable=f"{ENV_FORCE_PREEXISTING}={mode}",
            missing_variable=ENV_PREEXISTING_KUBECONFIG,
        )
        return PolicyDecision(adopt=False, reason=f"{ENV_PREEXISTING_KUBECONFIG} not set")

    if mode is None:
        logger.warning(
            "preexisting_policy_incomplete",
            set_variable=f"{ENV_PREEXISTING_KUBECONFIG}={kubeconfig}",
            missing_variable=ENV_FORCE_PREEXISTING,
        )
        return PolicyDecision(adopt=False, reason=f"{ENV_FORCE_PREEXISTING} not set")

    if mode == ENV_FORCE_PREEXISTING_ALL:
        return PolicyDecision(adopt=True, kubeconfig_path=kubeconfig, reason=f"{ENV_FORCE_PREEXISTING}={mode}")

    if mode == ENV_FORCE_PREEXISTING_SHARED:
        if shared:
            return PolicyDecision(
                adopt=True, kubeconfig_path=kubeconfig, reason=f"{ENV_FORCE_PREEXISTING}={mode}"
            )
        logger.info(
            "preexisting_cluster_not_used",
            reason=f"{ENV_FORCE_PREEXISTING}={mode} applies to shared callers only",
        )
        return PolicyDecision(adopt=False, reason=f"{ENV_FORCE_PREEXISTING}={mode} is shared-only")

    logger.warning("preexisting_policy_unsupported", variable=ENV_FORCE_PREEXISTING, value=mode)
    return PolicyDecision(adopt=False, reason=f"unsupported {ENV_FORCE_PREEXISTING}={mode}")


def wants_isolation(signals: PolicySignals) -> bool:
    """True when a caller should bypass the shared cluster.

    Any value other than the ``all`` sentinel, including an empty string,
    requests a private cluster.
    """
    return signals.force_isolated is not None and signals.force_isolated != ENV_FORCE_ISOLATED_ALL
