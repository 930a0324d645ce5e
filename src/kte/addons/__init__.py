"""Optional add-on components (Flux controllers)."""

from kte.addons.installer import DEFAULT_WAIT_POLICY, apply_addons, enabled_components
from kte.addons.manifests import AddonComponent, combined_manifest, open_foundation, open_manifest

__all__ = [
    "DEFAULT_WAIT_POLICY",
    "AddonComponent",
    "apply_addons",
    "combined_manifest",
    "enabled_components",
    "open_foundation",
    "open_manifest",
]
