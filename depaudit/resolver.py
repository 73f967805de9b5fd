"""Symbol resolution — attribute each reference token to a declaration.

Strategies run in a fixed order and the first one that matches wins:

1. exact declared name
2. alias (a path dependency's ``[lib] name``)
3. separator normalized declared name (``-`` written as ``_``)
4. macro introduced by ``#[macro_use] extern crate``
5. ``links`` metadata variable in a build script

Strategies 1-4 are tried against the declarations visible to the token's
build context first and only then against every declaration of the package,
which is how wrong-context usage is detected.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

import structlog

from depaudit.models.manifest import (
    CONTEXT_VISIBILITY,
    BuildContext,
    DependencyDeclaration,
    DependencyKind,
    Package,
    Workspace,
    canonical_crate_name,
)
from depaudit.models.usage import (
    MatchKind,
    RefKind,
    ReferenceToken,
    Resolution,
    ResolvedUsage,
    SelfReference,
    Unresolved,
)

log = structlog.get_logger("depaudit.resolver")

_KIND_ORDER = (DependencyKind.NORMAL, DependencyKind.DEVELOPMENT, DependencyKind.BUILD)

# Kind that wins when one name is declared under several tables.
_PREFERRED_KINDS: dict[BuildContext, tuple[DependencyKind, ...]] = {
    BuildContext.TEST: (DependencyKind.DEVELOPMENT, DependencyKind.NORMAL, DependencyKind.BUILD),
    BuildContext.BENCHMARK: (DependencyKind.DEVELOPMENT, DependencyKind.NORMAL, DependencyKind.BUILD),
    BuildContext.BUILD_SCRIPT: (DependencyKind.BUILD, DependencyKind.NORMAL, DependencyKind.DEVELOPMENT),
}

# Contexts whose #[macro_use] crates are also in scope for a TEST token, which
# may come from a #[cfg(test)] module of one of them.
_TEST_HOSTS = (BuildContext.LIBRARY, BuildContext.BINARY, BuildContext.EXAMPLE)

MacroScopes = Mapping[tuple[str, BuildContext], frozenset[str]]


def macro_use_scopes(tokens: Iterable[ReferenceToken]) -> dict[tuple[str, BuildContext], frozenset[str]]:
    """Crates imported with ``#[macro_use] extern crate``, per (package, context)."""
    scopes: dict[tuple[str, BuildContext], set[str]] = {}
    for token in tokens:
        if token.kind is RefKind.EXTERN_CRATE and token.macro_use:
            scopes.setdefault((token.package, token.context), set()).add(token.root)
    return {key: frozenset(names) for key, names in scopes.items()}


def _names(declaration: DependencyDeclaration) -> set[str]:
    return {declaration.canonical_name} | {canonical_crate_name(a) for a in declaration.aliases}


def _envify(name: str) -> str:
    return name.upper().replace("-", "_")


class SymbolResolver:
    """Resolve tokens against one workspace.

    ``macro_scopes`` comes from :func:`macro_use_scopes`; ``exported_macros``
    maps a member package name to its library's ``#[macro_export]`` names.
    Both are only needed for macro-introduced resolution.
    """

    def __init__(
        self,
        workspace: Workspace,
        macro_scopes: MacroScopes | None = None,
        exported_macros: Mapping[str, frozenset[str]] | None = None,
    ) -> None:
        self.workspace = workspace
        self.macro_scopes = macro_scopes or {}
        self.exported_macros = exported_macros or {}
        self._packages = {p.name: p for p in workspace.members}
        self._strategies: list[tuple[MatchKind, Callable[[ReferenceToken, list], list]]] = [
            (MatchKind.EXACT, self._exact),
            (MatchKind.ALIAS, self._alias),
            (MatchKind.NORMALIZED, self._normalized),
            (MatchKind.MACRO_INTRODUCED, self._macro_introduced),
        ]

    def resolve_all(self, tokens: Iterable[ReferenceToken]) -> list[Resolution]:
        return [self.resolve(token) for token in tokens]

    def resolve(self, token: ReferenceToken) -> Resolution:
        package = self._packages.get(token.package)
        if package is None:
            return Unresolved(token, reason="unknown_package")
        if token.kind is RefKind.LINK:
            return self._resolve_link(token, package)

        candidates = [d for d in package.declarations if self._feature_allows(d, token)]
        visible_kinds = CONTEXT_VISIBILITY[token.context]
        visible = [d for d in candidates if d.kind in visible_kinds]
        for pool in (visible, candidates):
            for match, strategy in self._strategies:
                matches = strategy(token, pool)
                if matches:
                    return self._pick(token, matches, match)

        if (
            token.kind is not RefKind.BARE_MACRO
            and package.has_library()
            and token.root == package.crate_name
        ):
            return SelfReference(token)
        return Unresolved(token)

    # ── strategies ───────────────────────────────────────────────────────

    @staticmethod
    def _exact(token: ReferenceToken, pool: list[DependencyDeclaration]) -> list[DependencyDeclaration]:
        if token.kind is RefKind.BARE_MACRO:
            return []
        return [d for d in pool if d.name == token.root]

    @staticmethod
    def _alias(token: ReferenceToken, pool: list[DependencyDeclaration]) -> list[DependencyDeclaration]:
        if token.kind is RefKind.BARE_MACRO:
            return []
        return [d for d in pool if token.root in d.aliases]

    @staticmethod
    def _normalized(token: ReferenceToken, pool: list[DependencyDeclaration]) -> list[DependencyDeclaration]:
        if token.kind is RefKind.BARE_MACRO:
            return []
        return [d for d in pool if token.root in _names(d)]

    def _macro_introduced(
        self, token: ReferenceToken, pool: list[DependencyDeclaration]
    ) -> list[DependencyDeclaration]:
        if token.kind is not RefKind.BARE_MACRO:
            return []
        scope = set(self.macro_scopes.get((token.package, token.context), ()))
        if token.context is BuildContext.TEST:
            for host in _TEST_HOSTS:
                scope |= self.macro_scopes.get((token.package, host), frozenset())
        if not scope:
            return []
        in_scope = [d for d in pool if _names(d) & scope]
        known = [d for d in in_scope if token.root in self._exports(d, ())]
        if known:
            return known
        unknown = [d for d in in_scope if self._exports(d, None) is None]
        if len({d.canonical_name for d in unknown}) == 1:
            return unknown
        return []

    def _exports(self, declaration: DependencyDeclaration, default):
        member = self._packages.get(declaration.package)
        if member is None or member.name not in self.exported_macros:
            return default
        return self.exported_macros[member.name]

    def _resolve_link(self, token: ReferenceToken, package: Package) -> Resolution:
        if token.context is not BuildContext.BUILD_SCRIPT:
            return Unresolved(token, reason="link_outside_build_script")
        matches = [
            d
            for d in package.declarations
            if d.kind is DependencyKind.NORMAL
            and d.links
            and token.root.startswith(_envify(d.links) + "_")
        ]
        providers = {d.package for d in matches}
        if not providers:
            return Unresolved(token, reason="link_provider_missing")
        if len(providers) > 1:
            log.debug("resolver.link_ambiguous", token=token.text, providers=sorted(providers))
            return Unresolved(token, reason="link_provider_ambiguous")
        return self._pick(token, matches, MatchKind.LINKS)

    # ── selection ────────────────────────────────────────────────────────

    @staticmethod
    def _feature_allows(declaration: DependencyDeclaration, token: ReferenceToken) -> bool:
        if not declaration.optional or not token.feature_guards:
            return True
        return bool(declaration.activating_features & token.feature_guards)

    @staticmethod
    def _pick(
        token: ReferenceToken, matches: list[DependencyDeclaration], match: MatchKind
    ) -> ResolvedUsage:
        order = _PREFERRED_KINDS.get(token.context, _KIND_ORDER)
        ranked = sorted(matches, key=lambda d: (order.index(d.kind), d.sort_key))
        primary = ranked[0]
        same_kind = [d for d in ranked[1:] if d.kind is primary.kind]
        return ResolvedUsage(
            token=token,
            declaration=primary,
            match=match,
            equivalents=tuple(d for d in same_kind if d.package == primary.package),
            ambiguous_with=tuple(d for d in same_kind if d.package != primary.package),
        )


def resolve(token: ReferenceToken, workspace: Workspace) -> Resolution:
    """Resolve a single token without macro-scope information."""
    return SymbolResolver(workspace).resolve(token)
