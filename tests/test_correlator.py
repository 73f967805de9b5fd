"""Tests for usage correlation and orphan detection."""

from __future__ import annotations

from pathlib import Path

from depaudit.correlator import correlate, find_orphans, suggest_kind
from depaudit.models.manifest import (
    BuildContext,
    DependencyDeclaration,
    DependencyKind,
    Package,
    Target,
    Workspace,
)
from depaudit.models.usage import (
    MatchKind,
    ReferenceToken,
    RefKind,
    ResolvedUsage,
    SelfReference,
    Unresolved,
    Verdict,
)

ROOT = Path("/ws")
LIB = BuildContext.LIBRARY
TEST = BuildContext.TEST
BUILD_SCRIPT = BuildContext.BUILD_SCRIPT


def _decl(name: str, kind: DependencyKind = DependencyKind.NORMAL, **overrides) -> DependencyDeclaration:
    overrides.setdefault("package", name)
    return DependencyDeclaration(name=name, kind=kind, **overrides)


def _workspace(*decls: DependencyDeclaration, targets: tuple[Target, ...] | None = None) -> Workspace:
    if targets is None:
        targets = (Target(LIB, "app", ROOT / "src" / "lib.rs"),)
    package = Package(
        name="app",
        version="0.1.0",
        manifest_path=ROOT / "Cargo.toml",
        targets=targets,
        declarations=tuple(sorted(decls, key=lambda d: d.sort_key)),
        lib_name="app",
    )
    return Workspace(root=ROOT, manifest_path=ROOT / "Cargo.toml", members=(package,))


def _token(root: str, context: BuildContext, line: int = 1, **overrides) -> ReferenceToken:
    overrides.setdefault("file", ROOT / "src" / "lib.rs")
    return ReferenceToken(root=root, kind=RefKind.PATH, context=context, package="app", line=line, **overrides)


def _usage(decl: DependencyDeclaration, context: BuildContext, match=MatchKind.EXACT, **kw) -> ResolvedUsage:
    return ResolvedUsage(token=_token(decl.name, context, **kw), declaration=decl, match=match)


def _only(classifications, name):
    [c] = [c for c in classifications if c.name == name]
    return c


class TestVerdicts:
    def test_unused(self):
        serde = _decl("serde")
        [c] = correlate(_workspace(serde), [])
        assert c.verdict is Verdict.UNUSED
        assert c.observed_contexts == frozenset()
        assert c.suggested_kind is None

    def test_used_correctly(self):
        serde = _decl("serde")
        [c] = correlate(_workspace(serde), [_usage(serde, LIB), _usage(serde, TEST)])
        assert c.verdict is Verdict.USED
        assert c.observed_contexts == frozenset({LIB, TEST})
        assert c.declared_contexts == frozenset(
            {LIB, BuildContext.BINARY, BuildContext.EXAMPLE, TEST, BuildContext.BENCHMARK}
        )

    def test_dev_dependency_in_tests_only(self):
        mock = _decl("mock_lib", DependencyKind.DEVELOPMENT)
        [c] = correlate(_workspace(mock), [_usage(mock, TEST)])
        assert c.verdict is Verdict.USED

    def test_dev_dependency_also_in_library(self):
        mock = _decl("mock_lib", DependencyKind.DEVELOPMENT)
        [c] = correlate(_workspace(mock), [_usage(mock, TEST), _usage(mock, LIB, line=7)])
        assert c.verdict is Verdict.WRONG_CONTEXT
        assert c.suggested_kind is DependencyKind.NORMAL
        assert c.locations == ("src/lib.rs:7",)

    def test_normal_dependency_only_in_build_script(self):
        cc = _decl("cc")
        [c] = correlate(_workspace(cc), [_usage(cc, BUILD_SCRIPT, file=ROOT / "build.rs")])
        assert c.verdict is Verdict.WRONG_CONTEXT
        assert c.suggested_kind is DependencyKind.BUILD
        assert c.locations == ("build.rs:1",)

    def test_no_single_kind_grants_everything(self):
        dep = _decl("dual", DependencyKind.BUILD)
        [c] = correlate(_workspace(dep), [_usage(dep, LIB), _usage(dep, BUILD_SCRIPT)])
        assert c.verdict is Verdict.WRONG_CONTEXT
        assert c.suggested_kind is None

    def test_links_usage_of_normal_dependency_is_granted(self):
        sys_crate = _decl("openssl-sys", links="openssl")
        usage = ResolvedUsage(
            token=ReferenceToken(
                root="OPENSSL_ROOT",
                kind=RefKind.LINK,
                context=BUILD_SCRIPT,
                package="app",
                file=ROOT / "build.rs",
                line=3,
            ),
            declaration=sys_crate,
            match=MatchKind.LINKS,
        )
        [c] = correlate(_workspace(sys_crate), [usage])
        assert c.verdict is Verdict.USED


class TestCrediting:
    def test_equivalents_credited_together(self):
        unix = _decl("libc", target="cfg(unix)")
        windows = _decl("libc", target="cfg(windows)")
        usage = ResolvedUsage(token=_token("libc", LIB), declaration=unix, match=MatchKind.EXACT, equivalents=(windows,))
        result = correlate(_workspace(unix, windows), [usage])
        assert [c.verdict for c in result] == [Verdict.USED, Verdict.USED]

    def test_ambiguity_warning_attached(self):
        rand = _decl("rand", target="cfg(unix)")
        other = _decl("rand", package="rand_win", target="cfg(windows)")
        usage = ResolvedUsage(
            token=_token("rand", LIB), declaration=rand, match=MatchKind.EXACT, ambiguous_with=(other,)
        )
        result = correlate(_workspace(rand, other), [usage])
        assert all(c.warnings for c in result)
        assert "rand_win" in result[0].warnings[0]
        # only the primary declaration is credited
        assert [c.verdict for c in result] == [Verdict.USED, Verdict.UNUSED]

    def test_non_resolved_outcomes_ignored(self):
        serde = _decl("serde")
        outcomes = [SelfReference(_token("app", TEST)), Unresolved(_token("serde_json", LIB))]
        [c] = correlate(_workspace(serde), outcomes)
        assert c.verdict is Verdict.UNUSED


class TestIgnoreAndOrder:
    def test_ignore_list(self):
        result = correlate(_workspace(_decl("docs_only"), _decl("serde")), [], ignore_list={"docs_only"})
        assert [c.name for c in result] == ["serde"]

    def test_order_by_name_then_kind(self):
        decls = [
            _decl("zeta"),
            _decl("alpha", DependencyKind.DEVELOPMENT),
            _decl("alpha"),
            _decl("alpha", DependencyKind.BUILD),
        ]
        result = correlate(_workspace(*decls), [])
        assert [(c.name, c.kind.value) for c in result] == [
            ("alpha", "build"),
            ("alpha", "development"),
            ("alpha", "normal"),
            ("zeta", "normal"),
        ]


class TestSuggestKind:
    def test_narrowest_first(self):
        dep = _decl("x", DependencyKind.DEVELOPMENT)
        assert suggest_kind([_usage(dep, TEST)]) is DependencyKind.DEVELOPMENT
        assert suggest_kind([_usage(dep, BUILD_SCRIPT)]) is DependencyKind.BUILD
        assert suggest_kind([_usage(dep, TEST), _usage(dep, BuildContext.EXAMPLE)]) is DependencyKind.NORMAL


class TestOrphans:
    def _targets(self):
        return (
            Target(LIB, "app", ROOT / "src" / "lib.rs"),
            Target(BuildContext.BINARY, "app", ROOT / "src" / "main.rs"),
            Target(TEST, "it", ROOT / "tests" / "it.rs"),
            Target(BUILD_SCRIPT, "build-script-build", ROOT / "build.rs"),
        )

    def test_target_without_self_reference_is_orphan(self):
        targets = self._targets()
        ws = _workspace(targets=targets)
        uses_lib = SelfReference(_token("app", TEST, file=ROOT / "tests" / "it.rs", target=targets[2]))
        [orphan] = find_orphans(ws, [uses_lib])
        assert orphan.context is BuildContext.BINARY
        assert orphan.artifact_name == "app"
        assert orphan.relative_path == "src/main.rs"

    def test_no_library_no_orphans(self):
        targets = (Target(BuildContext.BINARY, "tool", ROOT / "src" / "main.rs"),)
        assert find_orphans(_workspace(targets=targets), []) == []
