"""Install optional add-on components into a cluster."""

from __future__ import annotations

from kte.addons.manifests import AddonComponent, combined_manifest
from kte.core.config import AddonsConfig
from kte.core.context import Context
from kte.core.models import ChangeSet, WaitPolicy
from kte.reconcile.resource_manager import ResourceManager
from kte.utils.logging import get_logger, log_operation

logger = get_logger(__name__)

DEFAULT_WAIT_POLICY = WaitPolicy(interval=2.0, timeout=60.0)


def enabled_components(config: AddonsConfig) -> list[AddonComponent]:
    """Components switched on in ``config``, in dependency order."""
    flux = config.flux_components
    toggles = {
        AddonComponent.SOURCE_CONTROLLER: flux.source_controller,
        AddonComponent.HELM_CONTROLLER: flux.helm_controller,
        AddonComponent.KUSTOMIZE_CONTROLLER: flux.kustomize_controller,
    }
    return [component for component in AddonComponent if toggles[component]]


def apply_addons(
    resource_manager: ResourceManager,
    config: AddonsConfig,
    wait_policy: WaitPolicy | None = DEFAULT_WAIT_POLICY,
    ctx: Context | None = None,
) -> ChangeSet:
    """Apply every enabled component in one call and wait for it to be ready.

    Args:
        resource_manager: Resource manager bound to the target cluster
        config: Add-on toggles
        wait_policy: Convergence wait, defaults to 2s interval / 60s timeout
        ctx: Cancellation context

    Returns:
        ChangeSet of the apply; empty when nothing is enabled

    Raises:
        ApplyError: If applying fails
        ConvergenceTimeoutError: If the controllers do not become ready in time
    """
    components = enabled_components(config)
    if not components:
        logger.info("no_addons_enabled")
        return ChangeSet()

    names = [component.value for component in components]
    logger.info("installing_addons", components=names)

    change_set = resource_manager.apply_manifest(
        combined_manifest(components), wait_policy=wait_policy, ctx=ctx
    )

    log_operation(logger, "install_addons", components=names, objects=len(change_set))
    return change_set
