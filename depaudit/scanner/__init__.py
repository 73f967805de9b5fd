"""Source scanner — reference extraction from Rust source files."""

from depaudit.scanner.modtree import ModuleFile, discover_modules
from depaudit.scanner.scanner import (
    FileReferences,
    FileScan,
    WorkspaceScan,
    scan,
    scan_file,
    scan_workspace,
)
from depaudit.scanner.syntax import CfgGuard, parse_source

__all__ = [
    "CfgGuard",
    "FileReferences",
    "FileScan",
    "ModuleFile",
    "WorkspaceScan",
    "discover_modules",
    "parse_source",
    "scan",
    "scan_file",
    "scan_workspace",
]
