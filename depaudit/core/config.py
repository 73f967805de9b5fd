"""Run configuration for an audit."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def default_jobs() -> int:
    """Worker count used when none is configured."""
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class AuditConfig:
    """Options consumed by the audit engine.

    ``ignore_list`` holds declared names skipped entirely (known blind spots
    such as crates only named by generated code). ``fail_on_unused`` and
    ``fail_on_mislabeled`` choose which verdicts affect the exit status.
    ``check_doc_tests`` counts code blocks in library doc comments as test
    usage. ``all_members`` audits every workspace member instead of the
    default members.
    """

    workspace_root: Path
    ignore_list: frozenset[str] = field(default_factory=frozenset)
    fail_on_unused: bool = True
    fail_on_mislabeled: bool = True
    check_orphans: bool = False
    check_doc_tests: bool = True
    all_members: bool = False
    jobs: int = field(default_factory=default_jobs)

    def __post_init__(self) -> None:
        if self.jobs < 1:
            raise ValueError(f"jobs must be >= 1, got {self.jobs}")

    @classmethod
    def from_env(cls, workspace_root: Path | str, **overrides) -> AuditConfig:
        """Build a config with defaults read from the environment.

        Reads:
            DEPAUDIT_JOBS   — worker count
            DEPAUDIT_IGNORE — comma-separated declared names to skip

        Keyword overrides that are not None win over the environment.
        """
        values: dict = {"workspace_root": Path(workspace_root)}
        jobs = os.environ.get("DEPAUDIT_JOBS")
        if jobs:
            try:
                values["jobs"] = int(jobs)
            except ValueError:
                raise ValueError(f"DEPAUDIT_JOBS must be an integer, got {jobs!r}") from None
        ignore = os.environ.get("DEPAUDIT_IGNORE", "")
        names = {n.strip() for n in ignore.split(",") if n.strip()}
        if names:
            values["ignore_list"] = frozenset(names)
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        if "ignore_list" in values:
            values["ignore_list"] = frozenset(values["ignore_list"])
        return cls(**values)
