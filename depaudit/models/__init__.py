"""Data models shared by every depaudit stage."""

from depaudit.models.manifest import (
    CONTEXT_VISIBILITY,
    BuildContext,
    DependencyDeclaration,
    DependencyKind,
    Package,
    Target,
    Workspace,
    canonical_crate_name,
    contexts_for_kind,
)
from depaudit.models.usage import (
    AuditReport,
    AuditWarning,
    Classification,
    MatchKind,
    OrphanArtifact,
    ReferenceToken,
    RefKind,
    Resolution,
    ResolvedUsage,
    SelfReference,
    Unresolved,
    Verdict,
)

__all__ = [
    "AuditReport",
    "AuditWarning",
    "BuildContext",
    "CONTEXT_VISIBILITY",
    "Classification",
    "DependencyDeclaration",
    "DependencyKind",
    "MatchKind",
    "OrphanArtifact",
    "Package",
    "RefKind",
    "ReferenceToken",
    "Resolution",
    "ResolvedUsage",
    "SelfReference",
    "Target",
    "Unresolved",
    "Verdict",
    "Workspace",
    "canonical_crate_name",
    "contexts_for_kind",
]
