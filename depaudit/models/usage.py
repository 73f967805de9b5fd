"""Data models for references, resolution outcomes and audit verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from depaudit.models.manifest import BuildContext, DependencyDeclaration, DependencyKind, Target


class RefKind(str, Enum):
    """Syntactic form a reference was extracted from."""

    USE = "use"
    EXTERN_CRATE = "extern-crate"
    PATH = "path"
    ATTRIBUTE = "attribute"
    MACRO = "macro"
    BARE_MACRO = "bare-macro"  # ``name!(...)``, only resolvable via #[macro_use]
    LINK = "link"  # ``"DEP_<LINKS>_<KEY>"`` literal


@dataclass(frozen=True)
class ReferenceToken:
    """A raw external reference found in one source file."""

    root: str  # first path segment (or macro / link variable name)
    kind: RefKind
    context: BuildContext
    package: str
    file: Path
    line: int
    text: str = ""
    feature_guards: frozenset[str] = frozenset()
    macro_use: bool = False
    target: Target | None = None  # originating build target

    @property
    def sort_key(self) -> tuple:
        return (
            self.package,
            self.file.as_posix(),
            self.line,
            self.root,
            self.kind.value,
            self.context.value,
            self.text,
            tuple(sorted(self.feature_guards)),
            self.target.name if self.target else "",
            self.target.entry.as_posix() if self.target else "",
            self.macro_use,
        )

    @property
    def location(self) -> str:
        return f"{self.file}:{self.line}"


class MatchKind(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    NORMALIZED = "normalized"
    MACRO_INTRODUCED = "macro-introduced"
    LINKS = "links"


@dataclass(frozen=True)
class ResolvedUsage:
    """A token attributed to a declaration."""

    token: ReferenceToken
    declaration: DependencyDeclaration
    match: MatchKind
    # Same kind and underlying package, e.g. a target-gated repeat of the declaration.
    equivalents: tuple[DependencyDeclaration, ...] = ()
    # Distinct packages matched by the same strategy.
    ambiguous_with: tuple[DependencyDeclaration, ...] = ()

    @property
    def declarations(self) -> tuple[DependencyDeclaration, ...]:
        return (self.declaration, *self.equivalents)


@dataclass(frozen=True)
class SelfReference:
    """A token naming the analyzed package's own library crate."""

    token: ReferenceToken


@dataclass(frozen=True)
class Unresolved:
    token: ReferenceToken
    reason: str = "no_matching_declaration"


Resolution = ResolvedUsage | SelfReference | Unresolved


class Verdict(str, Enum):
    USED = "used-correctly"
    UNUSED = "unused"
    WRONG_CONTEXT = "used-in-wrong-context"


@dataclass(frozen=True)
class AuditWarning:
    """A non-fatal issue reported alongside findings."""

    code: str  # scan_io | unparsable_source | module_not_found | resolution_ambiguity | ...
    message: str
    package: str | None = None
    file: Path | None = None
    line: int | None = None

    @property
    def sort_key(self) -> tuple:
        return (
            self.package or "",
            self.file.as_posix() if self.file else "",
            self.line or 0,
            self.code,
            self.message,
        )


@dataclass(frozen=True)
class Classification:
    """Terminal verdict for one declaration."""

    package: str
    manifest_path: Path
    name: str
    dependency_package: str
    kind: DependencyKind
    target: str | None
    verdict: Verdict
    declared_contexts: frozenset[BuildContext]
    observed_contexts: frozenset[BuildContext]
    suggested_kind: DependencyKind | None = None
    locations: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_finding(self) -> bool:
        return self.verdict is not Verdict.USED


@dataclass(frozen=True)
class OrphanArtifact:
    """A non-library target that never references its package's own library."""

    package: str
    context: BuildContext
    artifact_name: str
    relative_path: str


@dataclass
class AuditReport:
    """Everything one run produced."""

    workspace_root: Path
    classifications: list[Classification] = field(default_factory=list)
    orphans: list[OrphanArtifact] = field(default_factory=list)
    warnings: list[AuditWarning] = field(default_factory=list)

    @property
    def unused(self) -> list[Classification]:
        return [c for c in self.classifications if c.verdict is Verdict.UNUSED]

    @property
    def mislabeled(self) -> list[Classification]:
        return [c for c in self.classifications if c.verdict is Verdict.WRONG_CONTEXT]
