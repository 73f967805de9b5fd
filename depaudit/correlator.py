"""Usage correlation — turn resolved usages into one verdict per declaration."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

import structlog

from depaudit.models.manifest import (
    BuildContext,
    DependencyDeclaration,
    DependencyKind,
    Workspace,
    contexts_for_kind,
)
from depaudit.models.usage import (
    Classification,
    MatchKind,
    OrphanArtifact,
    Resolution,
    ResolvedUsage,
    SelfReference,
    Verdict,
)

log = structlog.get_logger("depaudit.correlator")

# Narrowest first.
_SUGGESTION_ORDER = (DependencyKind.BUILD, DependencyKind.DEVELOPMENT, DependencyKind.NORMAL)

_ORPHAN_CONTEXTS = frozenset(
    {BuildContext.BINARY, BuildContext.TEST, BuildContext.EXAMPLE, BuildContext.BENCHMARK}
)


def grants(kind: DependencyKind, usage: ResolvedUsage) -> bool:
    """Whether a declaration of *kind* makes *usage* legal."""
    if usage.token.context in contexts_for_kind(kind):
        return True
    # links metadata of normal dependencies is exported to the build script
    return usage.match is MatchKind.LINKS and kind is DependencyKind.NORMAL


def suggest_kind(usages: list[ResolvedUsage]) -> DependencyKind | None:
    for kind in _SUGGESTION_ORDER:
        if all(grants(kind, u) for u in usages):
            return kind
    return None


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def _ambiguity_message(usage: ResolvedUsage) -> str:
    others = ", ".join(sorted(d.package for d in usage.ambiguous_with))
    return (
        f"'{usage.token.root}' at {usage.token.file.name}:{usage.token.line} was credited to "
        f"'{usage.declaration.package}' but also matches {others}"
    )


def correlate(
    workspace: Workspace,
    usages: Iterable[Resolution],
    *,
    ignore_list: Iterable[str] = frozenset(),
) -> list[Classification]:
    """Classify every declaration of every member.

    Only :class:`ResolvedUsage` entries count; other resolutions are ignored.
    Declarations named in *ignore_list* are skipped entirely.
    """
    ignored = frozenset(ignore_list)
    by_declaration: dict[tuple[str, DependencyDeclaration], list[ResolvedUsage]] = defaultdict(list)
    warnings: dict[tuple[str, DependencyDeclaration], set[str]] = defaultdict(set)

    for usage in usages:
        if not isinstance(usage, ResolvedUsage):
            continue
        package = usage.token.package
        for declaration in usage.declarations:
            by_declaration[(package, declaration)].append(usage)
        if usage.ambiguous_with:
            message = _ambiguity_message(usage)
            for declaration in (usage.declaration, *usage.ambiguous_with):
                warnings[(package, declaration)].add(message)

    classifications: list[Classification] = []
    for package in workspace.members:
        for declaration in package.declarations:
            if declaration.name in ignored:
                log.debug("correlator.ignored", package=package.name, dependency=declaration.name)
                continue
            key = (package.name, declaration)
            found = by_declaration.get(key, [])
            declared = contexts_for_kind(declaration.kind)
            observed = frozenset(u.token.context for u in found)
            suggested = None
            if not found:
                verdict = Verdict.UNUSED
            elif all(grants(declaration.kind, u) for u in found):
                verdict = Verdict.USED
            else:
                verdict = Verdict.WRONG_CONTEXT
                suggested = suggest_kind(found)
            offending = [u for u in found if verdict is Verdict.USED or not grants(declaration.kind, u)]
            locations = sorted(
                {f"{_relative(u.token.file, workspace.root)}:{u.token.line}" for u in offending}
            )
            classifications.append(
                Classification(
                    package=package.name,
                    manifest_path=package.manifest_path,
                    name=declaration.name,
                    dependency_package=declaration.package,
                    kind=declaration.kind,
                    target=declaration.target,
                    verdict=verdict,
                    declared_contexts=declared,
                    observed_contexts=observed,
                    suggested_kind=suggested,
                    locations=tuple(locations),
                    warnings=tuple(sorted(warnings.get(key, ()))),
                )
            )

    classifications.sort(key=lambda c: (c.package, c.name, c.kind.value, c.target or ""))
    return classifications


def find_orphans(workspace: Workspace, usages: Iterable[Resolution]) -> list[OrphanArtifact]:
    """Non-library targets that never reference their own package's library."""
    referencing = {
        (usage.token.package, usage.token.target)
        for usage in usages
        if isinstance(usage, SelfReference) and usage.token.target is not None
    }
    orphans: list[OrphanArtifact] = []
    for package in workspace.members:
        if not package.has_library():
            continue
        for target in package.targets:
            if target.context not in _ORPHAN_CONTEXTS:
                continue
            if (package.name, target) in referencing:
                continue
            orphans.append(
                OrphanArtifact(
                    package=package.name,
                    context=target.context,
                    artifact_name=target.name,
                    relative_path=_relative(target.entry, package.root),
                )
            )
    orphans.sort(key=lambda o: (o.package, o.context.value, o.artifact_name, o.relative_path))
    return orphans
