"""Manifest model — Cargo.toml parsing into an immutable Workspace."""

from depaudit.manifest.features import activating_features
from depaudit.manifest.loader import ManifestLoader, load, read_manifest
from depaudit.manifest.targets import discover_targets

__all__ = [
    "ManifestLoader",
    "activating_features",
    "discover_targets",
    "load",
    "read_manifest",
]
