"""depaudit: static detection of unused and mislabeled Cargo dependencies."""

from depaudit.api import audit, exit_status
from depaudit.core.config import AuditConfig
from depaudit.exceptions import AuditError, ManifestError, ScanError
from depaudit.models import AuditReport, Classification, Verdict

__version__ = "0.1.0"

__all__ = [
    "AuditConfig",
    "AuditError",
    "AuditReport",
    "Classification",
    "ManifestError",
    "ScanError",
    "Verdict",
    "audit",
    "exit_status",
]
