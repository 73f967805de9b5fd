"""Data models for parsed manifests: workspaces, packages, targets, declarations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DependencyKind(str, Enum):
    """Manifest table a declaration comes from."""

    NORMAL = "normal"
    BUILD = "build"
    DEVELOPMENT = "development"

    @classmethod
    def from_table(cls, key: str) -> DependencyKind | None:
        return _TABLE_TO_KIND.get(key)


_TABLE_TO_KIND: dict[str, DependencyKind] = {
    "dependencies": DependencyKind.NORMAL,
    "dev-dependencies": DependencyKind.DEVELOPMENT,
    "dev_dependencies": DependencyKind.DEVELOPMENT,
    "build-dependencies": DependencyKind.BUILD,
    "build_dependencies": DependencyKind.BUILD,
}


class BuildContext(str, Enum):
    """A compiled unit within a package."""

    LIBRARY = "library"
    BINARY = "binary"
    TEST = "test"
    EXAMPLE = "example"
    BENCHMARK = "benchmark"
    BUILD_SCRIPT = "build-script"


# Which dependency kinds each context can see.
CONTEXT_VISIBILITY: dict[BuildContext, frozenset[DependencyKind]] = {
    BuildContext.LIBRARY: frozenset({DependencyKind.NORMAL}),
    BuildContext.BINARY: frozenset({DependencyKind.NORMAL}),
    BuildContext.EXAMPLE: frozenset({DependencyKind.NORMAL}),
    BuildContext.TEST: frozenset({DependencyKind.NORMAL, DependencyKind.DEVELOPMENT}),
    BuildContext.BENCHMARK: frozenset({DependencyKind.NORMAL, DependencyKind.DEVELOPMENT}),
    BuildContext.BUILD_SCRIPT: frozenset({DependencyKind.BUILD}),
}


def contexts_for_kind(kind: DependencyKind) -> frozenset[BuildContext]:
    """Contexts in which a declaration of *kind* may be referenced."""
    return frozenset(ctx for ctx, kinds in CONTEXT_VISIBILITY.items() if kind in kinds)


def canonical_crate_name(name: str) -> str:
    """The identifier source code uses for a crate name (``foo-bar`` -> ``foo_bar``).

    Case is kept: Rust identifiers are case-sensitive, so ``Uuid`` never
    names the ``uuid`` crate.
    """
    return name.replace("-", "_")


@dataclass(frozen=True)
class Target:
    """One build-context root of a package."""

    context: BuildContext
    name: str
    entry: Path  # absolute path of the crate root file


@dataclass(frozen=True)
class DependencyDeclaration:
    """One entry of a dependency table."""

    name: str  # key as written in the manifest
    package: str  # underlying package identity (``package = "..."`` or name)
    kind: DependencyKind
    optional: bool = False
    activating_features: frozenset[str] = frozenset()
    target: str | None = None  # ``[target.<spec>]`` restriction, None if unconditional
    path: Path | None = None
    aliases: frozenset[str] = frozenset()
    links: str | None = None
    inherited: bool = False

    @property
    def canonical_name(self) -> str:
        return canonical_crate_name(self.name)

    @property
    def renamed(self) -> bool:
        return self.package != self.name

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.name, self.kind.value, self.target or "")


@dataclass(frozen=True)
class Package:
    """A single Cargo package and its effective declarations."""

    name: str
    version: str
    manifest_path: Path
    targets: tuple[Target, ...] = ()
    declarations: tuple[DependencyDeclaration, ...] = ()
    features: dict[str, tuple[str, ...]] = field(default_factory=dict, hash=False, compare=False)
    links: str | None = None
    lib_name: str | None = None  # set only when the package has a library target

    @property
    def root(self) -> Path:
        return self.manifest_path.parent

    @property
    def crate_name(self) -> str:
        """Name the package's own library is referenced by in source."""
        return self.lib_name or canonical_crate_name(self.name)

    def has_library(self) -> bool:
        return any(t.context is BuildContext.LIBRARY for t in self.targets)

    def targets_for(self, context: BuildContext) -> list[Target]:
        return [t for t in self.targets if t.context is context]


@dataclass(frozen=True)
class Workspace:
    """Every member package sharing one dependency-resolution namespace."""

    root: Path
    manifest_path: Path
    members: tuple[Package, ...] = ()
    workspace_dependencies: tuple[str, ...] = ()  # names under [workspace.dependencies]

    def package(self, name: str) -> Package | None:
        for member in self.members:
            if member.name == name:
                return member
        return None
