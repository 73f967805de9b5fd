"""Audit facade — run manifest loading, scanning, resolution and correlation."""

from __future__ import annotations

import time

import structlog

from depaudit.core.config import AuditConfig
from depaudit.correlator import correlate, find_orphans
from depaudit.manifest import load
from depaudit.models.usage import AuditReport, AuditWarning, Unresolved
from depaudit.resolver import SymbolResolver, macro_use_scopes
from depaudit.scanner import scan_workspace

log = structlog.get_logger("depaudit.api")

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_FAILURE = 2

_LINK_WARNINGS = {
    "link_provider_missing": "no normal dependency provides links metadata for '{text}'",
    "link_provider_ambiguous": "several dependencies provide links metadata for '{text}'",
}


def audit(config: AuditConfig) -> AuditReport:
    """Audit the workspace at ``config.workspace_root``.

    Raises:
        ManifestError: the manifests cannot be modeled; nothing is scanned.
    """
    started = time.monotonic()
    workspace = load(config.workspace_root, all_members=config.all_members)
    log.info("audit.started", root=str(workspace.root), members=len(workspace.members))

    scanned = scan_workspace(workspace, jobs=config.jobs, doc_tests=config.check_doc_tests)
    resolver = SymbolResolver(
        workspace,
        macro_scopes=macro_use_scopes(scanned.tokens),
        exported_macros=scanned.exported_macros,
    )
    resolutions = resolver.resolve_all(scanned.tokens)

    warnings = list(scanned.warnings)
    for resolution in resolutions:
        if isinstance(resolution, Unresolved) and resolution.reason in _LINK_WARNINGS:
            token = resolution.token
            warnings.append(
                AuditWarning(
                    code=resolution.reason,
                    message=_LINK_WARNINGS[resolution.reason].format(text=token.text),
                    package=token.package,
                    file=token.file,
                    line=token.line,
                )
            )

    classifications = correlate(workspace, resolutions, ignore_list=config.ignore_list)
    for classification in classifications:
        for message in classification.warnings:
            warnings.append(
                AuditWarning(
                    code="resolution_ambiguity",
                    message=message,
                    package=classification.package,
                    file=classification.manifest_path,
                )
            )

    report = AuditReport(
        workspace_root=workspace.root,
        classifications=classifications,
        orphans=find_orphans(workspace, resolutions) if config.check_orphans else [],
        warnings=sorted(set(warnings), key=lambda w: w.sort_key),
    )
    log.info(
        "audit.finished",
        unused=len(report.unused),
        mislabeled=len(report.mislabeled),
        orphans=len(report.orphans),
        warnings=len(report.warnings),
        elapsed=round(time.monotonic() - started, 3),
    )
    return report


def has_findings(report: AuditReport, config: AuditConfig) -> bool:
    if config.fail_on_unused and report.unused:
        return True
    if config.fail_on_mislabeled and report.mislabeled:
        return True
    return config.check_orphans and bool(report.orphans)


def exit_status(report: AuditReport, config: AuditConfig) -> int:
    """0 when clean, 1 when a finding the configuration fails on is present."""
    return EXIT_FINDINGS if has_findings(report, config) else EXIT_CLEAN
