"""End-to-end tests for the audit facade."""

from __future__ import annotations

import pytest

import depaudit.scanner.scanner as scanner_module
from depaudit.api import EXIT_CLEAN, EXIT_FINDINGS, audit, exit_status, has_findings
from depaudit.core.config import AuditConfig
from depaudit.exceptions import MalformedManifestError
from depaudit.models.manifest import BuildContext, DependencyKind
from depaudit.models.usage import Verdict
from depaudit.report import report_to_dict


def _verdicts(report) -> dict[str, Verdict]:
    return {c.name: c.verdict for c in report.classifications}


def _manifest(*tables: str) -> str:
    return '[package]\nname = "app"\nversion = "0.1.0"\n\n' + "\n".join(tables)


# ── verdicts ─────────────────────────────────────────────────────────────


class TestVerdicts:
    def test_clean_workspace(self, serde_like):
        config = AuditConfig(serde_like, jobs=2)
        report = audit(config)
        assert _verdicts(report) == {"mock_lib": Verdict.USED, "serde_like": Verdict.USED}
        assert report.warnings == []
        assert exit_status(report, config) == EXIT_CLEAN

    def test_unused_dependency(self, serde_like):
        manifest = serde_like / "Cargo.toml"
        manifest.write_text(manifest.read_text() + '\n[build-dependencies]\ncc = "1"\n')
        config = AuditConfig(serde_like)
        report = audit(config)
        assert [c.name for c in report.unused] == ["cc"]
        assert exit_status(report, config) == EXIT_FINDINGS

    def test_dev_dependency_used_by_library(self, serde_like):
        lib = serde_like / "src" / "lib.rs"
        lib.write_text(lib.read_text() + "\npub fn fake() -> mock_lib::Mock { mock_lib::Mock::new() }\n")
        report = audit(AuditConfig(serde_like))
        [finding] = report.mislabeled
        assert finding.name == "mock_lib"
        assert finding.suggested_kind is DependencyKind.NORMAL
        assert finding.observed_contexts == frozenset({BuildContext.LIBRARY, BuildContext.TEST})
        assert finding.locations and all(loc.startswith("src/lib.rs:") for loc in finding.locations)

    def test_dev_dependency_in_cfg_test_module(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\npretty_assertions = "1"\n'),
                "src/lib.rs": """
                    pub fn one() -> u8 { 1 }

                    #[cfg(test)]
                    mod tests {
                        use pretty_assertions::assert_eq;

                        #[test]
                        fn works() { assert_eq!(super::one(), 1); }
                    }
                """,
            }
        )
        report = audit(AuditConfig(root))
        assert _verdicts(report) == {"pretty_assertions": Verdict.USED}

    def test_normal_dependency_used_only_from_tests(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dependencies]\nonce_cell = "1"\n'),
                "src/lib.rs": "pub fn f() {}\n",
                "tests/it.rs": "use once_cell::sync::Lazy;\n",
            }
        )
        report = audit(AuditConfig(root))
        assert _verdicts(report) == {"once_cell": Verdict.USED}

    def test_build_script_dependency_declared_as_normal(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dependencies]\ncc = "1"\n'),
                "src/lib.rs": "",
                "build.rs": 'fn main() {\n    cc::Build::new().file("x.c").compile("x");\n}\n',
            }
        )
        [finding] = audit(AuditConfig(root)).mislabeled
        assert finding.suggested_kind is DependencyKind.BUILD
        assert finding.locations == ("build.rs:2",)

    def test_renamed_dependency(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest(
                    '[dependencies]\njson = { package = "serde_json", version = "1" }\n'
                ),
                "src/lib.rs": "pub fn parse(s: &str) { let _ = json::from_str::<u8>(s); }\n",
            }
        )
        assert _verdicts(audit(AuditConfig(root))) == {"json": Verdict.USED}

    def test_renamed_dependency_is_not_found_by_package_name(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest(
                    '[dependencies]\njson = { package = "serde_json", version = "1" }\n'
                ),
                "src/lib.rs": "pub fn parse(s: &str) { let _ = serde_json::from_str::<u8>(s); }\n",
            }
        )
        assert _verdicts(audit(AuditConfig(root))) == {"json": Verdict.UNUSED}

    def test_cfg_test_function_with_generic_return_type(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\nmock_lib = "1"\n'),
                "src/lib.rs": """
                    pub fn one() -> u8 { 1 }

                    #[cfg(test)]
                    fn helper() -> std::collections::HashMap<String, u32> { mock_lib::make() }
                """,
            }
        )
        report = audit(AuditConfig(root))
        assert _verdicts(report) == {"mock_lib": Verdict.USED}
        assert report.mislabeled == []

    def test_local_type_named_like_a_dependency(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dependencies]\nuuid = "1"\n'),
                "src/lib.rs": """
                    pub struct Uuid(u128);

                    impl Uuid {
                        pub fn nil() -> Self { Uuid(0) }
                    }

                    pub fn zero() -> Uuid { Uuid::nil() }
                """,
            }
        )
        assert _verdicts(audit(AuditConfig(root))) == {"uuid": Verdict.UNUSED}

    def test_ignore_list(self, serde_like):
        manifest = serde_like / "Cargo.toml"
        manifest.write_text(manifest.read_text() + '\n[build-dependencies]\ncc = "1"\n')
        config = AuditConfig(serde_like, ignore_list=frozenset({"cc"}))
        report = audit(config)
        assert "cc" not in _verdicts(report)
        assert exit_status(report, config) == EXIT_CLEAN


# ── documentation tests ──────────────────────────────────────────────────


_DOCUMENTED_LIB = """
    /// Returns one.
    ///
    /// ```
    /// doc_helper::check(app::one());
    /// ```
    pub fn one() -> u8 { 1 }
"""


class TestDocTests:
    def test_doc_test_counts_as_test_usage(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\ndoc_helper = "1"\n'),
                "src/lib.rs": _DOCUMENTED_LIB,
            }
        )
        report = audit(AuditConfig(root))
        assert _verdicts(report) == {"doc_helper": Verdict.USED}
        assert report.mislabeled == []

    def test_doc_tests_can_be_switched_off(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\ndoc_helper = "1"\n'),
                "src/lib.rs": _DOCUMENTED_LIB,
            }
        )
        report = audit(AuditConfig(root, check_doc_tests=False))
        assert _verdicts(report) == {"doc_helper": Verdict.UNUSED}

    def test_binary_doc_comments_are_not_tests(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\ndoc_helper = "1"\n'),
                "src/main.rs": """
                    /// ```
                    /// doc_helper::check(1);
                    /// ```
                    fn main() {}
                """,
            }
        )
        assert _verdicts(audit(AuditConfig(root))) == {"doc_helper": Verdict.UNUSED}

    def test_non_rust_code_block_is_skipped(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest('[dev-dependencies]\ndoc_helper = "1"\n'),
                "src/lib.rs": """
                    //! ```text
                    //! doc_helper::check(1);
                    //! ```
                    pub fn one() -> u8 { 1 }
                """,
            }
        )
        assert _verdicts(audit(AuditConfig(root))) == {"doc_helper": Verdict.UNUSED}


# ── workspace members ────────────────────────────────────────────────────


class TestDefaultMembers:
    @pytest.fixture
    def root_with_member(self, make_workspace):
        return make_workspace(
            {
                "Cargo.toml": _manifest(
                    '[dependencies]\nserde_like = "1"\n\n[workspace]\nmembers = ["crates/tool"]\n'
                ),
                "src/lib.rs": "pub use serde_like::Serialize;\n",
                "crates/tool/Cargo.toml": (
                    '[package]\nname = "tool"\nversion = "0.1.0"\n\n'
                    '[dependencies]\nunused_dep = "1"\n'
                ),
                "crates/tool/src/lib.rs": "pub fn tool() {}\n",
            }
        )

    def test_root_package_is_the_default(self, root_with_member):
        report = audit(AuditConfig(root_with_member))
        assert _verdicts(report) == {"serde_like": Verdict.USED}

    def test_all_members(self, root_with_member):
        report = audit(AuditConfig(root_with_member, all_members=True))
        assert [c.name for c in report.unused] == ["unused_dep"]


# ── partial failure ──────────────────────────────────────────────────────


class TestPartialFailure:
    def test_unreadable_test_file(self, serde_like):
        (serde_like / "tests" / "it.rs").write_bytes(b"\xff\xfe use mock_lib::Mock;")
        report = audit(AuditConfig(serde_like))
        assert [w.code for w in report.warnings] == ["scan_io"]
        assert report.warnings[0].file.name == "it.rs"
        assert _verdicts(report) == {"mock_lib": Verdict.UNUSED, "serde_like": Verdict.USED}

    def test_missing_link_provider_is_a_warning(self, make_workspace):
        root = make_workspace(
            {
                "Cargo.toml": _manifest(),
                "build.rs": 'fn main() {\n    let _ = std::env::var("DEP_Z_ROOT");\n}\n',
            }
        )
        report = audit(AuditConfig(root))
        assert [w.code for w in report.warnings] == ["link_provider_missing"]
        assert report.warnings[0].line == 2

    def test_manifest_error_is_fatal(self, tmp_path):
        with pytest.raises(MalformedManifestError):
            audit(AuditConfig(tmp_path))


# ── determinism ──────────────────────────────────────────────────────────


class TestDeterminism:
    def test_idempotent(self, serde_like):
        config = AuditConfig(serde_like)
        assert report_to_dict(audit(config)) == report_to_dict(audit(config))

    def test_independent_of_worker_count(self, serde_like):
        one = audit(AuditConfig(serde_like, jobs=1))
        many = audit(AuditConfig(serde_like, jobs=16))
        assert report_to_dict(one) == report_to_dict(many)

    def test_independent_of_module_order(self, make_workspace, monkeypatch):
        root = make_workspace(
            {
                "Cargo.toml": _manifest(
                    '[dependencies]\nserde_like = "1"\nlog = "0.4"\n\n'
                    '[dev-dependencies]\nmock_lib = "1"\n'
                ),
                "src/lib.rs": "mod a;\nmod b;\nmod c;\n",
                "src/a.rs": "pub fn a() -> serde_like::Value { serde_like::Value::default() }\n",
                "src/b.rs": "#[cfg(test)]\nmod tests {\n    use mock_lib::Mock;\n}\n",
                "src/c.rs": 'pub fn c() { log::info!("c"); }\npub fn leak() -> mock_lib::Mock { todo!() }\n',
            }
        )
        forward = audit(AuditConfig(root, jobs=1))
        assert _verdicts(forward) == {
            "log": Verdict.USED,
            "mock_lib": Verdict.WRONG_CONTEXT,
            "serde_like": Verdict.USED,
        }

        discover = scanner_module.discover_modules
        monkeypatch.setattr(
            scanner_module,
            "discover_modules",
            lambda package, target, warnings=None: discover(package, target, warnings)[::-1],
        )
        backward = audit(AuditConfig(root, jobs=1))
        assert report_to_dict(backward) == report_to_dict(forward)


# ── orphans and exit policy ──────────────────────────────────────────────


class TestOrphansAndPolicy:
    @pytest.fixture
    def with_binary(self, serde_like):
        (serde_like / "src" / "main.rs").write_text("fn main() {}\n")
        return serde_like

    def test_orphans_are_opt_in(self, with_binary):
        config = AuditConfig(with_binary)
        report = audit(config)
        assert report.orphans == []
        assert exit_status(report, config) == EXIT_CLEAN

    def test_orphan_binary(self, with_binary):
        config = AuditConfig(with_binary, check_orphans=True)
        report = audit(config)
        [orphan] = report.orphans
        assert orphan.context is BuildContext.BINARY
        assert orphan.relative_path == "src/main.rs"
        assert exit_status(report, config) == EXIT_FINDINGS

    def test_fail_flags(self, serde_like):
        manifest = serde_like / "Cargo.toml"
        manifest.write_text(manifest.read_text() + '\n[build-dependencies]\ncc = "1"\n')
        report = audit(AuditConfig(serde_like))
        assert not has_findings(report, AuditConfig(serde_like, fail_on_unused=False))
        assert has_findings(report, AuditConfig(serde_like, fail_on_mislabeled=False))
