"""Cargo manifest loading — workspace aggregation and dependency tables."""

from __future__ import annotations

import sys
from collections import defaultdict
from dataclasses import replace
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import structlog

from depaudit.exceptions import (
    AmbiguousAliasError,
    MalformedManifestError,
    MissingWorkspaceMemberError,
)
from depaudit.manifest.features import activating_features
from depaudit.manifest.targets import discover_targets
from depaudit.models.manifest import (
    BuildContext,
    DependencyDeclaration,
    DependencyKind,
    Package,
    Workspace,
    canonical_crate_name,
)

log = structlog.get_logger("depaudit.manifest")

MANIFEST_NAME = "Cargo.toml"
_GLOB_CHARS = set("*?[")


def read_manifest(manifest_path: Path) -> dict[str, Any]:
    """Parse one ``Cargo.toml`` into a dict."""
    try:
        content = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedManifestError(manifest_path, f"cannot read manifest: {e}") from e
    try:
        return tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise MalformedManifestError(manifest_path, f"invalid TOML: {e}") from e


class _PathDependencyInfo:
    """Best-effort lookup of ``[lib] name`` and ``links`` for path dependencies."""

    def __init__(self) -> None:
        self._cache: dict[Path, tuple[str | None, str | None]] = {}

    def get(self, directory: Path) -> tuple[str | None, str | None]:
        if directory not in self._cache:
            self._cache[directory] = self._read(directory)
        return self._cache[directory]

    @staticmethod
    def _read(directory: Path) -> tuple[str | None, str | None]:
        manifest_path = directory / MANIFEST_NAME
        try:
            data = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            log.debug("manifest.path_dependency_unreadable", path=str(manifest_path))
            return None, None
        package = data.get("package", {})
        lib = data.get("lib", {})
        lib_name = lib.get("name") if isinstance(lib, dict) else None
        links = package.get("links") if isinstance(package, dict) else None
        return (
            lib_name if isinstance(lib_name, str) else None,
            links if isinstance(links, str) else None,
        )


class ManifestLoader:
    """Build an immutable :class:`Workspace` from a directory on disk."""

    def __init__(self, workspace_root: Path | str, all_members: bool = False) -> None:
        self.root = Path(workspace_root).resolve()
        self.all_members = all_members
        self.manifest_path = self.root / MANIFEST_NAME
        self._path_info = _PathDependencyInfo()

    def load(self) -> Workspace:
        if not self.manifest_path.is_file():
            raise MalformedManifestError(self.manifest_path, "no Cargo.toml found")
        data = read_manifest(self.manifest_path)

        workspace_table = data.get("workspace")
        if workspace_table is not None and not isinstance(workspace_table, dict):
            raise MalformedManifestError(self.manifest_path, "[workspace] must be a table")

        if workspace_table is not None:
            inherit_from = (self.manifest_path, workspace_table)
        else:
            inherit_from = self._find_parent_workspace()

        member_manifests: list[Path] = []
        if "package" in data:
            member_manifests.append(self.manifest_path)
        if workspace_table is not None:
            member_manifests.extend(self._member_manifests(workspace_table))
            if not self.all_members:
                member_manifests = self._default_members(workspace_table, member_manifests)
        if not member_manifests:
            raise MalformedManifestError(
                self.manifest_path, "manifest has neither [package] nor [workspace]"
            )

        seen: set[Path] = set()
        packages: list[Package] = []
        for manifest_path in member_manifests:
            if manifest_path in seen:
                continue
            seen.add(manifest_path)
            member_data = data if manifest_path == self.manifest_path else read_manifest(manifest_path)
            packages.append(self._load_package(manifest_path, member_data, inherit_from))

        packages.sort(key=lambda p: (p.name, p.manifest_path.as_posix()))
        workspace_dependencies = ()
        if inherit_from is not None:
            workspace_dependencies = tuple(sorted(self._workspace_dependencies(*inherit_from)))
        log.debug(
            "manifest.loaded",
            root=str(self.root),
            members=[p.name for p in packages],
        )
        return Workspace(
            root=self.root,
            manifest_path=self.manifest_path,
            members=tuple(packages),
            workspace_dependencies=workspace_dependencies,
        )

    # ── workspace structure ──────────────────────────────────────────────

    def _find_parent_workspace(self) -> tuple[Path, dict[str, Any]] | None:
        """Locate an enclosing ``[workspace]`` when the root is a member package."""
        for directory in self.root.parents:
            candidate = directory / MANIFEST_NAME
            if not candidate.is_file():
                continue
            try:
                parent_data = tomllib.loads(candidate.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError):
                continue
            table = parent_data.get("workspace")
            if isinstance(table, dict):
                return candidate, table
        return None

    def _member_manifests(self, workspace_table: dict[str, Any]) -> list[Path]:
        members = workspace_table.get("members", [])
        excludes = workspace_table.get("exclude", [])
        for key, value in (("members", members), ("exclude", excludes)):
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise MalformedManifestError(
                    self.manifest_path, f"workspace.{key} must be a list of paths"
                )
        excluded = {(self.root / e).resolve() for e in excludes}
        return self._expand(members, excluded)

    def _default_members(
        self, workspace_table: dict[str, Any], members: list[Path]
    ) -> list[Path]:
        """The members Cargo builds when no package is selected.

        ``default-members`` when present, else the root package of a
        non-virtual workspace, else every member.
        """
        defaults = workspace_table.get("default-members")
        if defaults is None:
            if self.manifest_path in members:
                return [self.manifest_path]
            return members
        if not isinstance(defaults, list) or not all(isinstance(v, str) for v in defaults):
            raise MalformedManifestError(
                self.manifest_path, "workspace.default-members must be a list of paths"
            )
        selected = set(self._expand(defaults, set()))
        stray = sorted(selected - set(members))
        if stray:
            raise MalformedManifestError(
                self.manifest_path, f"default member {stray[0].parent} is not a workspace member"
            )
        log.debug("manifest.default_members", count=len(selected))
        return [m for m in members if m in selected]

    def _expand(self, patterns: list[str], excluded: set[Path]) -> list[Path]:
        manifests: list[Path] = []
        for pattern in patterns:
            if _GLOB_CHARS & set(pattern):
                for match in sorted(self.root.glob(pattern)):
                    directory = match.resolve()
                    if directory in excluded or not (directory / MANIFEST_NAME).is_file():
                        continue
                    manifests.append(directory / MANIFEST_NAME)
                continue
            directory = (self.root / pattern).resolve()
            if directory in excluded:
                continue
            if not (directory / MANIFEST_NAME).is_file():
                raise MissingWorkspaceMemberError(self.manifest_path, pattern)
            manifests.append(directory / MANIFEST_NAME)
        return manifests

    def _workspace_dependencies(
        self, manifest_path: Path, workspace_table: dict[str, Any]
    ) -> dict[str, Any]:
        dependencies = workspace_table.get("dependencies", {})
        if not isinstance(dependencies, dict):
            raise MalformedManifestError(manifest_path, "[workspace.dependencies] must be a table")
        return dependencies

    # ── packages ─────────────────────────────────────────────────────────

    def _load_package(
        self,
        manifest_path: Path,
        data: dict[str, Any],
        inherit_from: tuple[Path, dict[str, Any]] | None,
    ) -> Package:
        package = data.get("package")
        if not isinstance(package, dict) or not isinstance(package.get("name"), str):
            raise MalformedManifestError(manifest_path, "[package] with a string name is required")
        name: str = package["name"]
        version = package.get("version", "")
        if not isinstance(version, str):
            # ``version.workspace = true`` and friends
            version = ""

        features = data.get("features", {})
        if not isinstance(features, dict) or not all(
            isinstance(v, list) and all(isinstance(i, str) for i in v) for v in features.values()
        ):
            raise MalformedManifestError(manifest_path, "[features] must map names to lists")

        raw: list[DependencyDeclaration] = []
        for key, table in data.items():
            kind = DependencyKind.from_table(key)
            if kind is not None:
                raw.extend(self._parse_table(manifest_path, table, kind, None, inherit_from))
        targets_table = data.get("target", {})
        if not isinstance(targets_table, dict):
            raise MalformedManifestError(manifest_path, "[target] must be a table")
        for spec, platform_tables in targets_table.items():
            if not isinstance(platform_tables, dict):
                raise MalformedManifestError(manifest_path, f"[target.{spec}] must be a table")
            for key, table in platform_tables.items():
                kind = DependencyKind.from_table(key)
                if kind is not None:
                    raw.extend(self._parse_table(manifest_path, table, kind, spec, inherit_from))

        activation = activating_features(features, [d.name for d in raw if d.optional])
        declarations = tuple(
            sorted(
                (
                    replace(d, activating_features=activation.get(d.name, frozenset())) if d.optional else d
                    for d in raw
                ),
                key=lambda d: d.sort_key,
            )
        )
        _check_unique_local_names(manifest_path, declarations)

        targets = discover_targets(manifest_path, data, name)
        library = next((t for t in targets if t.context is BuildContext.LIBRARY), None)
        links = package.get("links")
        return Package(
            name=name,
            version=version,
            manifest_path=manifest_path,
            targets=targets,
            declarations=declarations,
            features={k: tuple(v) for k, v in features.items()},
            links=links if isinstance(links, str) else None,
            lib_name=canonical_crate_name(library.name) if library else None,
        )

    def _parse_table(
        self,
        manifest_path: Path,
        table: Any,
        kind: DependencyKind,
        target: str | None,
        inherit_from: tuple[Path, dict[str, Any]] | None,
    ) -> list[DependencyDeclaration]:
        if not isinstance(table, dict):
            raise MalformedManifestError(manifest_path, f"{kind.value} dependencies must be a table")
        return [
            self._parse_dependency(manifest_path, name, spec, kind, target, inherit_from)
            for name, spec in table.items()
        ]

    def _parse_dependency(
        self,
        manifest_path: Path,
        name: str,
        spec: Any,
        kind: DependencyKind,
        target: str | None,
        inherit_from: tuple[Path, dict[str, Any]] | None,
    ) -> DependencyDeclaration:
        base_dir = manifest_path.parent
        inherited = False
        if isinstance(spec, str):
            spec = {"version": spec}
        elif not isinstance(spec, dict):
            raise MalformedManifestError(manifest_path, f"dependency '{name}' has an invalid value")

        if spec.get("workspace") is True:
            if inherit_from is None:
                raise MalformedManifestError(
                    manifest_path, f"dependency '{name}' inherits from a workspace that does not exist"
                )
            ws_manifest, ws_table = inherit_from
            base = self._workspace_dependencies(ws_manifest, ws_table).get(name)
            if base is None:
                raise MalformedManifestError(
                    manifest_path,
                    f"dependency '{name}' is not declared in [workspace.dependencies]",
                )
            if isinstance(base, str):
                base = {"version": base}
            elif not isinstance(base, dict):
                raise MalformedManifestError(
                    ws_manifest, f"workspace dependency '{name}' has an invalid value"
                )
            merged = dict(base)
            merged.update({k: v for k, v in spec.items() if k != "workspace"})
            merged["features"] = list(base.get("features", [])) + list(spec.get("features", []))
            spec = merged
            base_dir = ws_manifest.parent if "path" in base else base_dir
            inherited = True

        package = spec.get("package", name)
        if not isinstance(package, str):
            raise MalformedManifestError(manifest_path, f"dependency '{name}' has a non-string package")

        path: Path | None = None
        aliases: frozenset[str] = frozenset()
        links: str | None = None
        if isinstance(spec.get("path"), str):
            path = (base_dir / spec["path"]).resolve()
            lib_name, links = self._path_info.get(path)
            # a rename overrides the library name as the extern crate name
            if (
                lib_name
                and package == name
                and canonical_crate_name(lib_name) != canonical_crate_name(name)
            ):
                aliases = frozenset({lib_name})

        return DependencyDeclaration(
            name=name,
            package=package,
            kind=kind,
            optional=bool(spec.get("optional", False)),
            target=target,
            path=path,
            aliases=aliases,
            links=links,
            inherited=inherited,
        )


def _check_unique_local_names(
    manifest_path: Path, declarations: tuple[DependencyDeclaration, ...]
) -> None:
    bound: dict[tuple[DependencyKind, str | None, str], list[str]] = defaultdict(list)
    for declaration in declarations:
        bound[(declaration.kind, declaration.target, declaration.canonical_name)].append(
            declaration.name
        )
    for (_, _, local_name), names in sorted(bound.items(), key=lambda item: item[0][2]):
        if len(names) > 1:
            raise AmbiguousAliasError(manifest_path, local_name, names)


def load(workspace_root: Path | str, all_members: bool = False) -> Workspace:
    """Parse the workspace rooted at *workspace_root*.

    Only the default members are loaded unless *all_members* is set.

    Raises :class:`~depaudit.exceptions.ManifestError` subclasses on
    malformed manifests, ambiguous local crate names and missing members.
    """
    return ManifestLoader(workspace_root, all_members).load()
