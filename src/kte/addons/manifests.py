"""Embedded manifests of the optional add-on components."""

from __future__ import annotations

import io
from collections.abc import Iterable
from enum import Enum
from importlib import resources
from typing import BinaryIO

from kte.core.exceptions import ConfigurationError

_MANIFEST_PACKAGE = "kte.addons.flux"
FOUNDATION_MANIFEST = "foundation.yaml"
_DOCUMENT_SEPARATOR = b"\n---\n"


class AddonComponent(str, Enum):
    """Installable add-on components, in dependency order."""

    SOURCE_CONTROLLER = "source-controller"
    HELM_CONTROLLER = "helm-controller"
    KUSTOMIZE_CONTROLLER = "kustomize-controller"

    @property
    def manifest_name(self) -> str:
        return f"{self.value}.yaml"


def _read(filename: str) -> bytes:
    return resources.files(_MANIFEST_PACKAGE).joinpath(filename).read_bytes()


def _component(component: AddonComponent | str) -> AddonComponent:
    try:
        return AddonComponent(component)
    except ValueError as e:
        known = ", ".join(c.value for c in AddonComponent)
        raise ConfigurationError(f"Unknown add-on component '{component}' (known: {known})") from e


def open_manifest(component: AddonComponent | str) -> BinaryIO:
    """Open the manifest stream of one component.

    Raises:
        ConfigurationError: If the component is not a known add-on
    """
    return io.BytesIO(_read(_component(component).manifest_name))


def open_foundation() -> BinaryIO:
    """Open the manifest of objects shared by all components."""
    return io.BytesIO(_read(FOUNDATION_MANIFEST))


def combined_manifest(components: Iterable[AddonComponent | str]) -> bytes:
    """Concatenate the foundation and the given components' manifests.

    Components are emitted in declaration order regardless of input order;
    duplicates are ignored. Returns empty bytes for no components.
    """
    selected = {_component(c) for c in components}
    ordered = [c for c in AddonComponent if c in selected]
    if not ordered:
        return b""

    parts = [open_foundation().read()]
    parts.extend(open_manifest(component).read() for component in ordered)
    return _DOCUMENT_SEPARATOR.join(part.strip(b"\n") for part in parts) + b"\n"
