"""Scoped test identities."""

from kte.identity.provisioner import (
    IdentityProvisioner,
    ScopedIdentity,
    TeardownKind,
    TeardownLedger,
    TeardownStep,
)

__all__ = [
    "IdentityProvisioner",
    "ScopedIdentity",
    "TeardownKind",
    "TeardownLedger",
    "TeardownStep",
]
