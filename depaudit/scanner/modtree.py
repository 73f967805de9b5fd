"""Module-tree discovery for one build target.

Only files reachable from the target's entry file through ``mod`` declarations
are part of the target; stray ``.rs`` files next to them are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from depaudit.exceptions import ScanError
from depaudit.models.manifest import Package, Target
from depaudit.models.usage import AuditWarning
from depaudit.scanner.syntax import CfgGuard, ModDecl, parse_source

log = structlog.get_logger("depaudit.scanner")


@dataclass(frozen=True)
class ModuleFile:
    """A source file that belongs to a target, with its inherited cfg guard."""

    path: Path
    guard: CfgGuard = CfgGuard()
    is_entry: bool = False


def read_source(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def module_directory(module: ModuleFile) -> Path:
    """Directory holding the children of *module*.

    Crate roots and ``mod.rs`` files own their own directory; ``foo.rs`` owns
    ``foo/``.
    """
    if module.is_entry or module.path.name == "mod.rs":
        return module.path.parent
    return module.path.parent / module.path.stem


def child_candidates(module: ModuleFile, decl: ModDecl) -> list[Path]:
    if decl.path_attr is not None:
        if decl.inline_path:
            return [module_directory(module).joinpath(*decl.inline_path, decl.path_attr)]
        return [module.path.parent / decl.path_attr]
    base = module_directory(module).joinpath(*decl.inline_path)
    return [base / f"{decl.name}.rs", base / decl.name / "mod.rs"]


def discover_modules(
    package: Package,
    target: Target,
    warnings: list[AuditWarning] | None = None,
) -> list[ModuleFile]:
    """Walk the ``mod`` declarations reachable from *target*'s entry file.

    Files that cannot be read or parsed are still returned (the scan
    reports them); their children are unknown and skipped.
    """
    warnings = warnings if warnings is not None else []
    entry = ModuleFile(path=target.entry, is_entry=True)
    found: list[ModuleFile] = []
    visited: set[Path] = set()
    worklist = [entry]

    while worklist:
        module = worklist.pop()
        key = module.path.resolve()
        if key in visited:
            continue
        visited.add(key)
        found.append(module)

        try:
            syntax = parse_source(read_source(module.path), str(module.path), doc_tests=False)
        except (OSError, UnicodeDecodeError, ScanError) as e:
            log.debug("scanner.module_unreadable", path=str(module.path), error=str(e))
            continue
        if syntax.file_guard.disabled:
            continue

        for decl in syntax.modules:
            candidates = child_candidates(module, decl)
            child_path = next((p for p in candidates if p.is_file()), None)
            if child_path is None:
                warnings.append(
                    AuditWarning(
                        code="module_not_found",
                        message=f"module '{decl.name}' not found (tried "
                        + ", ".join(str(p) for p in candidates)
                        + ")",
                        package=package.name,
                        file=module.path,
                        line=decl.line,
                    )
                )
                continue
            worklist.append(
                ModuleFile(path=child_path, guard=module.guard.merge(decl.guard))
            )

    found.sort(key=lambda m: m.path.as_posix())
    return found
