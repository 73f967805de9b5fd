"""Shared pytest fixtures for depaudit tests."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest


def _write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write ``{relative path: content}`` under *root* (content is dedented)."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return root


@pytest.fixture
def write_tree():
    return _write_tree


@pytest.fixture
def make_workspace(tmp_path):
    """Build a Cargo workspace on disk and return its root."""

    def _make(files: dict[str, str], subdir: str | None = None) -> Path:
        root = tmp_path / subdir if subdir else tmp_path
        root.mkdir(parents=True, exist_ok=True)
        return _write_tree(root, files)

    return _make


@pytest.fixture
def serde_like(make_workspace):
    """A library using its normal dependency and a test using its dev-dependency."""
    return make_workspace(
        {
            "Cargo.toml": """
                [package]
                name = "app"
                version = "0.1.0"

                [dependencies]
                serde_like = "1"

                [dev-dependencies]
                mock_lib = "1"
            """,
            "src/lib.rs": """
                use serde_like::Serialize;

                pub fn encode<T: Serialize>(value: &T) -> String {
                    serde_like::to_string(value)
                }
            """,
            "tests/it.rs": """
                use mock_lib::Mock;

                #[test]
                fn encodes() {
                    let m = Mock::new();
                    assert!(app::encode(&m).len() > 0);
                }
            """,
        }
    )
