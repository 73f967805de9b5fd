"""Custom exceptions for depaudit."""

from __future__ import annotations

from pathlib import Path


class AuditError(Exception):
    """Base exception for all depaudit errors."""


# ── Manifest errors (fatal) ──────────────────────────────────────────────


class ManifestError(AuditError):
    """Raised when the workspace manifests cannot be turned into a model."""

    def __init__(self, manifest_path: Path | str, message: str):
        self.manifest_path = Path(manifest_path)
        super().__init__(f"{manifest_path}: {message}")


class MalformedManifestError(ManifestError):
    """Raised on unreadable or structurally invalid manifests."""


class AmbiguousAliasError(ManifestError):
    """Raised when two declarations of the same kind bind the same local crate name."""

    def __init__(self, manifest_path: Path | str, local_name: str, names: list[str]):
        self.local_name = local_name
        self.names = names
        super().__init__(
            manifest_path,
            f"declarations {names} all bind the crate name '{local_name}'",
        )


class MissingWorkspaceMemberError(ManifestError):
    """Raised when a listed workspace member has no manifest."""

    def __init__(self, manifest_path: Path | str, member: str):
        self.member = member
        super().__init__(manifest_path, f"workspace member '{member}' has no Cargo.toml")


# ── Scan errors (recovered per file) ─────────────────────────────────────


class ScanError(AuditError):
    """Raised when a single source file cannot contribute references."""

    def __init__(self, path: Path | str, message: str, line: int | None = None):
        self.path = Path(path)
        self.line = line
        self.message = message
        location = f"{path}:{line}" if line is not None else str(path)
        super().__init__(f"{location}: {message}")


class ScanIoError(ScanError):
    """Raised when a source file cannot be read."""


class UnparsableSourceError(ScanError):
    """Raised when a source file does not parse as Rust."""
