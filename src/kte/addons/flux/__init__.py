"""Embedded Flux controller manifests."""
