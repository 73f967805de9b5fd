"""Rendering of audit reports as text and as JSON-ready dicts."""

from __future__ import annotations

from itertools import groupby
from pathlib import Path
from typing import Any

from depaudit.models.usage import AuditReport, AuditWarning, Classification, Verdict


def _relative(path: Path | None, root: Path) -> str | None:
    if path is None:
        return None
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def _describe(c: Classification) -> str:
    label = c.name if c.name == c.dependency_package else f"{c.name} (package {c.dependency_package})"
    table = c.kind.value if c.target is None else f"{c.kind.value}, target {c.target}"
    if c.verdict is Verdict.UNUSED:
        return f"  unused: {label} [{table}]"
    contexts = ", ".join(sorted(ctx.value for ctx in c.observed_contexts))
    line = f"  wrong context: {label} [{table}] used from {contexts}"
    if c.suggested_kind is not None:
        line += f"; declare it as {c.suggested_kind.value}"
    return line


def _warning_line(warning: AuditWarning, root: Path) -> str:
    location = _relative(warning.file, root)
    if location and warning.line:
        location = f"{location}:{warning.line}"
    prefix = f"{location}: " if location else ""
    return f"  {warning.code}: {prefix}{warning.message}"


def render_text(report: AuditReport) -> str:
    """Human-readable summary grouped by package."""
    lines: list[str] = []
    findings = [c for c in report.classifications if c.is_finding]
    for package, group in groupby(findings, key=lambda c: c.package):
        lines.append(f"{package}:")
        for classification in group:
            lines.append(_describe(classification))
            if classification.verdict is Verdict.WRONG_CONTEXT:
                lines.extend(f"    at {loc}" for loc in classification.locations)

    if report.orphans:
        lines.append("orphan artifacts:")
        for orphan in report.orphans:
            lines.append(
                f"  {orphan.package}: {orphan.context.value} '{orphan.artifact_name}' "
                f"({orphan.relative_path}) never uses its package's library"
            )

    if report.warnings:
        lines.append("warnings:")
        lines.extend(_warning_line(w, report.workspace_root) for w in report.warnings)

    if not findings and not report.orphans:
        lines.append(f"no findings in {len(report.classifications)} declarations")
    else:
        lines.append(
            f"{len(report.unused)} unused, {len(report.mislabeled)} in the wrong context, "
            f"{len(report.orphans)} orphan artifacts"
        )
    return "\n".join(lines)


def _classification_dict(c: Classification, root: Path) -> dict[str, Any]:
    return {
        "package": c.package,
        "manifest": _relative(c.manifest_path, root),
        "name": c.name,
        "dependency_package": c.dependency_package,
        "kind": c.kind.value,
        "target": c.target,
        "verdict": c.verdict.value,
        "declared_contexts": sorted(ctx.value for ctx in c.declared_contexts),
        "observed_contexts": sorted(ctx.value for ctx in c.observed_contexts),
        "suggested_kind": c.suggested_kind.value if c.suggested_kind else None,
        "locations": list(c.locations),
        "warnings": list(c.warnings),
    }


def report_to_dict(report: AuditReport) -> dict[str, Any]:
    """JSON-serializable form of *report*; dump with ``sort_keys=True``."""
    root = report.workspace_root
    return {
        "workspace_root": root.as_posix(),
        "classifications": [_classification_dict(c, root) for c in report.classifications],
        "orphans": [
            {
                "package": o.package,
                "context": o.context.value,
                "artifact_name": o.artifact_name,
                "relative_path": o.relative_path,
            }
            for o in report.orphans
        ],
        "warnings": [
            {
                "code": w.code,
                "message": w.message,
                "package": w.package,
                "file": _relative(w.file, root),
                "line": w.line,
            }
            for w in report.warnings
        ],
        "summary": {
            "declarations": len(report.classifications),
            "unused": len(report.unused),
            "mislabeled": len(report.mislabeled),
            "orphans": len(report.orphans),
        },
    }
