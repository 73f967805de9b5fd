"""Source scanning — turn a target's module tree into reference tokens."""

from __future__ import annotations

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import structlog

from depaudit.core.config import default_jobs
from depaudit.exceptions import ScanIoError, UnparsableSourceError
from depaudit.models.manifest import BuildContext, Package, Target, Workspace
from depaudit.models.usage import AuditWarning, ReferenceToken
from depaudit.scanner.modtree import ModuleFile, discover_modules, read_source
from depaudit.scanner.syntax import parse_source

log = structlog.get_logger("depaudit.scanner")

# Contexts whose #[cfg(test)] / #[test] items are compiled into the test harness.
_TEST_HARNESS_CONTEXTS = frozenset(
    {BuildContext.LIBRARY, BuildContext.BINARY, BuildContext.EXAMPLE}
)


@dataclass
class FileScan:
    """Everything one file contributed."""

    tokens: list[ReferenceToken] = field(default_factory=list)
    warnings: list[AuditWarning] = field(default_factory=list)
    exported_macros: frozenset[str] = frozenset()


def scan_file(
    package: Package, target: Target, module: ModuleFile, doc_tests: bool = True
) -> FileScan:
    """Scan one module file of *target*.

    I/O and parse failures become warnings with an empty contribution.
    Doc-test code blocks count only for library targets, as test usage.
    """
    path = module.path
    try:
        try:
            source = read_source(path)
        except (OSError, UnicodeDecodeError) as e:
            raise ScanIoError(path, str(e)) from e
        # rustdoc only runs the documentation tests of libraries
        syntax = parse_source(
            source, str(path), doc_tests=doc_tests and target.context is BuildContext.LIBRARY
        )
    except ScanIoError as e:
        log.warning("scanner.file_unreadable", path=str(path), error=e.message)
        return FileScan(
            warnings=[AuditWarning("scan_io", str(e), package=package.name, file=path)]
        )
    except UnparsableSourceError as e:
        log.warning("scanner.file_unparsable", path=str(path), line=e.line, error=e.message)
        return FileScan(
            warnings=[
                AuditWarning(
                    "unparsable_source", str(e), package=package.name, file=path, line=e.line
                )
            ]
        )

    file_guard = module.guard.merge(syntax.file_guard)
    if file_guard.disabled:
        return FileScan()

    tokens: list[ReferenceToken] = []
    for ref in syntax.references:
        guard = module.guard.merge(ref.guard)
        if guard.disabled:
            continue
        context = target.context
        if ref.doc_test or (guard.test_only and context in _TEST_HARNESS_CONTEXTS):
            context = BuildContext.TEST
        tokens.append(
            ReferenceToken(
                root=ref.root,
                kind=ref.kind,
                context=context,
                package=package.name,
                file=path,
                line=ref.line,
                text=ref.text,
                feature_guards=guard.features,
                macro_use=ref.macro_use,
                target=target,
            )
        )
    return FileScan(tokens=tokens, exported_macros=frozenset(syntax.exported_macros))


class FileReferences:
    """Lazy, restartable sequence of the references in one file.

    Each iteration re-reads the file, so the sequence reflects the file's
    current contents.
    """

    def __init__(
        self,
        package: Package,
        target: Target,
        module: ModuleFile,
        warnings: list[AuditWarning] | None = None,
        doc_tests: bool = True,
    ) -> None:
        self.package = package
        self.target = target
        self.module = module
        self.warnings = warnings
        self.doc_tests = doc_tests

    def __iter__(self) -> Iterator[ReferenceToken]:
        result = scan_file(self.package, self.target, self.module, self.doc_tests)
        if self.warnings is not None:
            self.warnings.extend(result.warnings)
        yield from result.tokens


def scan(
    package: Package,
    target: Target,
    warnings: list[AuditWarning] | None = None,
    doc_tests: bool = True,
) -> Iterator[ReferenceToken]:
    """Yield every reference token of *target*, file by file.

    Non-fatal problems are appended to *warnings* when a list is given.
    """
    for module in discover_modules(package, target, warnings):
        yield from FileReferences(package, target, module, warnings, doc_tests)


@dataclass
class WorkspaceScan:
    tokens: list[ReferenceToken] = field(default_factory=list)
    warnings: list[AuditWarning] = field(default_factory=list)
    # package name -> #[macro_export] names of its library
    exported_macros: dict[str, frozenset[str]] = field(default_factory=dict)


def scan_workspace(
    workspace: Workspace, jobs: int | None = None, doc_tests: bool = True
) -> WorkspaceScan:
    """Scan every target of every member concurrently.

    Module trees are discovered first (one task per target), then each file
    is scanned as its own task. The merged output is sorted, so it does not
    depend on task completion order.
    """
    units = [(package, target) for package in workspace.members for target in package.targets]
    workers = jobs or default_jobs()
    result = WorkspaceScan()

    def discover(unit: tuple[Package, Target]) -> tuple[list[ModuleFile], list[AuditWarning]]:
        warnings: list[AuditWarning] = []
        return discover_modules(unit[0], unit[1], warnings), warnings

    with ThreadPoolExecutor(max_workers=workers) as pool:
        trees = list(pool.map(discover, units))
        file_units = []
        for (package, target), (modules, warnings) in zip(units, trees):
            result.warnings.extend(warnings)
            file_units.extend((package, target, module) for module in modules)
        scans = list(pool.map(lambda u: scan_file(*u, doc_tests=doc_tests), file_units))

    exported: dict[str, set[str]] = {}
    for (package, target, _), file_scan in zip(file_units, scans):
        result.tokens.extend(file_scan.tokens)
        result.warnings.extend(file_scan.warnings)
        if target.context is BuildContext.LIBRARY:
            exported.setdefault(package.name, set()).update(file_scan.exported_macros)

    result.tokens.sort(key=lambda t: t.sort_key)
    # a file shared by several targets reports the same problem once
    result.warnings = sorted(set(result.warnings), key=lambda w: w.sort_key)
    result.exported_macros = {name: frozenset(names) for name, names in sorted(exported.items())}
    log.info(
        "scanner.done",
        targets=len(units),
        files=len(file_units),
        tokens=len(result.tokens),
        warnings=len(result.warnings),
    )
    return result
