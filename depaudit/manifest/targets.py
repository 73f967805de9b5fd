"""Build-target discovery following Cargo's layout conventions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from depaudit.exceptions import MalformedManifestError
from depaudit.models.manifest import BuildContext, Target, canonical_crate_name

# (context, [[table]] key, auto-discovery flag, conventional directory)
_TARGET_TABLES: list[tuple[BuildContext, str, str, str]] = [
    (BuildContext.BINARY, "bin", "autobins", "src/bin"),
    (BuildContext.TEST, "test", "autotests", "tests"),
    (BuildContext.EXAMPLE, "example", "autoexamples", "examples"),
    (BuildContext.BENCHMARK, "bench", "autobenches", "benches"),
]

_CONTEXT_ORDER = {ctx: i for i, ctx in enumerate(BuildContext)}


def _auto_entries(directory: Path) -> dict[str, Path]:
    """``dir/<name>.rs`` and ``dir/<name>/main.rs`` entries."""
    found: dict[str, Path] = {}
    if not directory.is_dir():
        return found
    for child in sorted(directory.iterdir()):
        if child.is_file() and child.suffix == ".rs":
            found[child.stem] = child
        elif child.is_dir() and (child / "main.rs").is_file():
            found.setdefault(child.name, child / "main.rs")
    return found


def _default_entry(root: Path, directory: str, name: str) -> Path:
    single = root / directory / f"{name}.rs"
    nested = root / directory / name / "main.rs"
    if not single.exists() and nested.exists():
        return nested
    return single


def _explicit_tables(
    manifest_path: Path, data: dict[str, Any], key: str
) -> list[dict[str, Any]]:
    tables = data.get(key, [])
    if not isinstance(tables, list) or not all(isinstance(t, dict) for t in tables):
        raise MalformedManifestError(manifest_path, f"[[{key}]] must be an array of tables")
    return tables


def discover_targets(
    manifest_path: Path, data: dict[str, Any], package_name: str
) -> tuple[Target, ...]:
    """Return every build-context root of the package described by *data*."""
    root = manifest_path.parent
    package = data.get("package", {})
    targets: list[Target] = []

    lib = data.get("lib", {})
    if not isinstance(lib, dict):
        raise MalformedManifestError(manifest_path, "[lib] must be a table")
    lib_path = lib.get("path")
    if lib_path is None and (root / "src" / "lib.rs").is_file():
        lib_path = "src/lib.rs"
    if lib_path is not None:
        lib_name = lib.get("name", canonical_crate_name(package_name))
        targets.append(Target(BuildContext.LIBRARY, str(lib_name), root / lib_path))

    for context, key, auto_flag, directory in _TARGET_TABLES:
        entries: dict[str, Path] = {}
        if package.get(auto_flag, True) is not False:
            if context is BuildContext.BINARY and (root / "src" / "main.rs").is_file():
                entries[package_name] = root / "src" / "main.rs"
            entries.update(_auto_entries(root / directory))

        for table in _explicit_tables(manifest_path, data, key):
            name = table.get("name")
            path = table.get("path")
            if name is None and path is None:
                raise MalformedManifestError(
                    manifest_path, f"[[{key}]] entry needs a name or a path"
                )
            if path is not None:
                entry = root / path
                # an explicit path replaces the auto-discovered entry for that file
                entries = {n: p for n, p in entries.items() if p != entry}
            elif context is BuildContext.BINARY and name == package_name:
                entry = root / "src" / "main.rs"
            else:
                entry = _default_entry(root, directory, str(name))
            entries[str(name) if name is not None else Path(path).stem] = entry

        for name, entry in entries.items():
            targets.append(Target(context, name, entry))

    build = package.get("build")
    if build is None or build is True:
        if (root / "build.rs").is_file():
            targets.append(Target(BuildContext.BUILD_SCRIPT, "build-script-build", root / "build.rs"))
    elif isinstance(build, str):
        targets.append(Target(BuildContext.BUILD_SCRIPT, "build-script-build", root / build))
    elif build is not False:
        raise MalformedManifestError(manifest_path, "package.build must be a path or a boolean")

    targets.sort(key=lambda t: (_CONTEXT_ORDER[t.context], t.name, t.entry.as_posix()))
    return tuple(targets)
