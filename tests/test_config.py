"""Tests for AuditConfig and environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from depaudit.core.config import AuditConfig, default_jobs


class TestAuditConfig:
    def test_defaults(self):
        config = AuditConfig(Path("/ws"))
        assert config.ignore_list == frozenset()
        assert config.fail_on_unused and config.fail_on_mislabeled
        assert not config.check_orphans
        assert config.check_doc_tests
        assert not config.all_members
        assert config.jobs == default_jobs()

    def test_rejects_zero_jobs(self):
        with pytest.raises(ValueError, match="jobs"):
            AuditConfig(Path("/ws"), jobs=0)


class TestFromEnv:
    @patch.dict(os.environ, {"DEPAUDIT_JOBS": "3", "DEPAUDIT_IGNORE": "docs_dep, ,extra"}, clear=True)
    def test_reads_environment(self):
        config = AuditConfig.from_env("/ws")
        assert config.workspace_root == Path("/ws")
        assert config.jobs == 3
        assert config.ignore_list == frozenset({"docs_dep", "extra"})

    @patch.dict(os.environ, {"DEPAUDIT_JOBS": "3", "DEPAUDIT_IGNORE": "docs_dep"}, clear=True)
    def test_overrides_win(self):
        config = AuditConfig.from_env("/ws", jobs=5, ignore_list=["other"], check_orphans=None)
        assert config.jobs == 5
        assert config.ignore_list == frozenset({"other"})
        assert not config.check_orphans

    @patch.dict(os.environ, {"DEPAUDIT_JOBS": "lots"}, clear=True)
    def test_bad_jobs(self):
        with pytest.raises(ValueError, match="DEPAUDIT_JOBS"):
            AuditConfig.from_env("/ws")

    @patch.dict(os.environ, {}, clear=True)
    def test_empty_environment(self):
        assert AuditConfig.from_env("/ws") == AuditConfig(Path("/ws"))
