"""Syntax extraction — crate references, module declarations and cfg guards.

Sources are parsed with tree-sitter's Rust grammar. Outer attributes
(``#[cfg(...)]``, ``#[test]``, ``#[macro_use]``, ``#[path = ...]``) are the
preceding siblings of the item they apply to, inner attributes (``#![...]``)
apply to the enclosing file or block. Macro arguments stay unparsed token
trees, so paths inside them are recovered from the token sequence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import NamedTuple

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

from depaudit.exceptions import UnparsableSourceError
from depaudit.models.usage import RefKind

RUST_LANGUAGE = Language(tree_sitter_rust.language())

_PATH_KEYWORDS = frozenset({"crate", "self", "super", "Self"})
_TOOL_NAMESPACES = frozenset({"rustfmt", "clippy", "rustdoc", "diagnostic"})
_LINK_VAR = re.compile(r"DEP_([A-Z0-9_]+)")
_SCOPED = frozenset({"scoped_identifier", "scoped_type_identifier"})
_STRINGS = frozenset({"string_literal", "raw_string_literal"})
_COMMENTS = frozenset({"line_comment", "block_comment"})
# Nodes whose children are a list of separately attributed elements. In any
# other node an outer attribute covers the rest of its parent (match arms,
# struct-expression fields).
_SEQUENCES = frozenset(
    {
        "source_file", "declaration_list", "block", "field_declaration_list",
        "ordered_field_declaration_list", "enum_variant_list", "parameters",
        "field_initializer_list", "arguments", "array_expression",
        "tuple_expression", "match_block", "type_parameters", "where_clause",
    }
)
# rustdoc code-block attributes that keep a fenced block a Rust doc test
_DOCTEST_TAGS = frozenset(
    {"rust", "ignore", "should_panic", "no_run", "compile_fail", "test_harness", "standalone_crate"}
)
_FENCE = re.compile(r"^\s*(```+|~~~+)\s*(.*)$")


# ── cfg predicates ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class CfgGuard:
    """What the enclosing ``cfg`` attributes say about a piece of code."""

    features: frozenset[str] = frozenset()
    test_only: bool = False
    disabled: bool = False

    def merge(self, other: CfgGuard) -> CfgGuard:
        if other == _NO_GUARD:
            return self
        return CfgGuard(
            features=self.features | other.features,
            test_only=self.test_only or other.test_only,
            disabled=self.disabled or other.disabled,
        )

    def __bool__(self) -> bool:
        return bool(self.features) or self.test_only or self.disabled


_NO_GUARD = CfgGuard()


class _Item(NamedTuple):
    """One element of a token tree.

    ``kind`` is ``ident``, ``punct``, ``keyword``, ``string``, ``meta``,
    ``tree`` or ``other``; ``text`` holds the string contents for strings.
    """

    kind: str
    text: str
    node: Node

    def is_punct(self, text: str) -> bool:
        return self.kind == "punct" and self.text == text


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _line(node: Node) -> int:
    return node.start_point[0] + 1


def _compact(node: Node) -> str:
    return "".join(_text(node).split())


def _string_value(node: Node) -> str | None:
    text = _text(node)
    start, end = text.find('"'), text.rfind('"')
    if start == -1 or end <= start:
        return None
    return text[start + 1 : end]


def _tree_items(tree: Node) -> list[_Item]:
    """Flatten one level of a token tree, dropping its own delimiters."""
    children = list(tree.children)
    if children and not children[0].is_named and children[0].type in ("(", "[", "{"):
        children = children[1:]
    if children and not children[-1].is_named and children[-1].type in (")", "]", "}"):
        children = children[:-1]
    items: list[_Item] = []
    for child in children:
        kind = child.type
        if kind in _COMMENTS:
            continue
        if kind == "token_tree":
            items.append(_Item("tree", "", child))
        elif kind == "identifier":
            items.append(_Item("ident", _text(child), child))
        elif kind in _STRINGS:
            items.append(_Item("string", _string_value(child) or "", child))
        elif kind == "metavariable":
            items.append(_Item("meta", _text(child), child))
        elif kind in ("self", "super", "crate"):
            items.append(_Item("keyword", kind, child))
        elif child.is_named:
            items.append(_Item("other", _text(child), child))
        else:
            text = _text(child)
            if text[:1].isalpha():
                items.append(_Item("keyword", text, child))
                continue
            # the grammar may merge adjacent punctuation (``>::``, ``&::``)
            k = 0
            while k < len(text):
                step = 2 if text.startswith("::", k) else 1
                items.append(_Item("punct", text[k : k + step], child))
                k += step
    return items


def _split_items(items: list[_Item]) -> list[list[_Item]]:
    parts: list[list[_Item]] = [[]]
    for item in items:
        if item.is_punct(","):
            parts.append([])
        else:
            parts[-1].append(item)
    return [p for p in parts if p]


def _parse_predicate(items: list[_Item]) -> tuple:
    if not items or items[0].kind != "ident":
        return ("unknown",)
    head = items[0].text
    if len(items) == 2 and items[1].kind == "tree":
        children = [_parse_predicate(part) for part in _split_items(_tree_items(items[1].node))]
        if head in ("any", "all"):
            return (head, children)
        if head == "not":
            return ("not", children[0] if children else ("unknown",))
        return ("unknown",)
    if len(items) == 3 and items[1].is_punct("=") and items[2].kind == "string":
        if head == "feature":
            return ("feature", items[2].text)
        return ("unknown",)
    if len(items) == 1 and head == "test":
        return ("test",)
    return ("unknown",)


def _truth(pred: tuple) -> bool | None:
    """Three-valued truth: only constant predicates have a known value."""
    tag = pred[0]
    if tag == "any":
        values = [_truth(c) for c in pred[1]]
        if True in values:
            return True
        if all(v is False for v in values):
            return False
        return None
    if tag == "all":
        values = [_truth(c) for c in pred[1]]
        if False in values:
            return False
        if all(v is True for v in values):
            return True
        return None
    if tag == "not":
        value = _truth(pred[1])
        return None if value is None else not value
    # features, test and platform predicates all depend on the build
    return None


def _requires_test(pred: tuple) -> bool:
    tag = pred[0]
    if tag == "test":
        return True
    if tag == "all":
        return any(_requires_test(c) for c in pred[1])
    if tag == "any":
        return bool(pred[1]) and all(_requires_test(c) for c in pred[1])
    return False


def _positive_features(pred: tuple) -> frozenset[str]:
    tag = pred[0]
    if tag == "feature":
        return frozenset({pred[1]})
    if tag in ("any", "all"):
        result: frozenset[str] = frozenset()
        for child in pred[1]:
            result |= _positive_features(child)
        return result
    return frozenset()


def _guard_from_items(items: list[_Item]) -> CfgGuard:
    pred = _parse_predicate(items)
    return CfgGuard(
        features=_positive_features(pred),
        test_only=_requires_test(pred),
        disabled=_truth(pred) is False,
    )


def cfg_guard(predicate: str) -> CfgGuard:
    """Evaluate a ``cfg`` predicate such as ``all(test, feature = "x")``."""
    root = _parse(f"#![cfg({predicate})]").root_node
    for item in root.named_children:
        spec = _attribute_spec(item)
        if spec is not None and spec.arguments is not None:
            return _guard_from_items(_tree_items(spec.arguments))
    return _NO_GUARD


# ── extraction results ───────────────────────────────────────────────────


@dataclass(frozen=True)
class RawReference:
    root: str
    kind: RefKind
    line: int
    text: str = ""
    guard: CfgGuard = _NO_GUARD
    macro_use: bool = False
    doc_test: bool = False  # found in a documentation code block


@dataclass(frozen=True)
class ModDecl:
    """An out-of-line ``mod name;`` declaration."""

    name: str
    line: int
    inline_path: tuple[str, ...] = ()  # enclosing inline ``mod a { ... }`` blocks
    path_attr: str | None = None
    guard: CfgGuard = _NO_GUARD


@dataclass
class SourceSyntax:
    references: list[RawReference] = field(default_factory=list)
    modules: list[ModDecl] = field(default_factory=list)
    exported_macros: set[str] = field(default_factory=set)
    file_guard: CfgGuard = _NO_GUARD


# ── token trees ──────────────────────────────────────────────────────────


def _link_reference(value: str, node: Node) -> RawReference | None:
    match = _LINK_VAR.fullmatch(value)
    if match is None:
        return None
    return RawReference(match.group(1), RefKind.LINK, _line(node), value)


def _starts_absolute(prev: _Item | None) -> bool:
    """Whether ``::name`` after *prev* is an extern path rather than a path segment."""
    if prev is None:
        return True
    if prev.kind == "keyword":
        return prev.text not in _PATH_KEYWORDS
    if prev.kind == "punct":
        return prev.text not in (">", "$")
    return False


def _path_in_items(items: list[_Item], start: int, kind: RefKind) -> RawReference:
    segments = [items[start].text]
    k = start
    while k + 2 < len(items) and items[k + 1].is_punct("::") and items[k + 2].kind == "ident":
        segments.append(items[k + 2].text)
        k += 2
    if (
        kind is RefKind.PATH
        and k + 2 < len(items)
        and items[k + 1].is_punct("!")
        and items[k + 2].kind == "tree"
    ):
        kind = RefKind.MACRO
    return RawReference(items[start].text, kind, _line(items[start].node), "::".join(segments))


def _token_tree_references(tree: Node, kind: RefKind = RefKind.PATH) -> list[RawReference]:
    """Paths, macro calls and link literals inside an unparsed token tree."""
    found: list[RawReference] = []
    items = _tree_items(tree)
    for i, item in enumerate(items):
        if item.kind == "tree":
            found.extend(_token_tree_references(item.node, kind))
            continue
        if item.kind == "string":
            link = _link_reference(item.text, item.node)
            if link is not None:
                found.append(link)
            continue
        prev = items[i - 1] if i > 0 else None
        nxt = items[i + 1] if i + 1 < len(items) else None
        if item.is_punct("::"):
            if (
                nxt is not None
                and nxt.kind == "ident"
                and nxt.text not in _PATH_KEYWORDS
                and _starts_absolute(prev)
            ):
                found.append(_path_in_items(items, i + 1, kind))
            continue
        if item.kind != "ident" or item.text in _PATH_KEYWORDS or nxt is None:
            continue
        if prev is not None and prev.kind == "punct" and prev.text in ("::", ".", "$"):
            continue
        if nxt.is_punct("::"):
            found.append(_path_in_items(items, i, kind))
        elif (
            nxt.is_punct("!")
            and i + 2 < len(items)
            and items[i + 2].kind == "tree"
            and item.text != "macro_rules"
        ):
            found.append(RawReference(item.text, RefKind.BARE_MACRO, _line(item.node), f"{item.text}!"))
    return found


# ── attributes ───────────────────────────────────────────────────────────


class _AttrSpec(NamedTuple):
    path: tuple[str, ...]
    arguments: Node | None  # token tree
    value: str | None  # ``#[name = "value"]``
    line: int


def _attribute_spec(item: Node) -> _AttrSpec | None:
    attribute = next((c for c in item.named_children if c.type == "attribute"), None)
    if attribute is None or not attribute.named_children:
        return None
    path_node = attribute.named_children[0]
    arguments = attribute.child_by_field_name("arguments")
    if arguments is None:
        arguments = next(
            (c for c in attribute.named_children[1:] if c.type == "token_tree"), None
        )
    value_node = attribute.child_by_field_name("value")
    value = None
    if value_node is not None and value_node.type in _STRINGS:
        value = _string_value(value_node)
    path = tuple(s for s in _compact(path_node).split("::") if s)
    return _AttrSpec(path, arguments, value, _line(item))


def _nested_spec(items: list[_Item]) -> _AttrSpec | None:
    """An attribute written inside ``cfg_attr(condition, ...)``."""
    path: list[str] = []
    k = 0
    while k < len(items) and items[k].kind == "ident":
        path.append(items[k].text)
        if k + 1 < len(items) and items[k + 1].is_punct("::"):
            k += 2
            continue
        k += 1
        break
    if not path:
        return None
    rest = items[k:]
    arguments = rest[0].node if rest and rest[0].kind == "tree" else None
    value = None
    if len(rest) >= 2 and rest[0].is_punct("=") and rest[1].kind == "string":
        value = rest[1].text
    return _AttrSpec(tuple(path), arguments, value, _line(items[0].node))


@dataclass
class _Attributes:
    guard: CfgGuard = _NO_GUARD
    macro_use: bool = False
    macro_export: bool = False
    path_attr: str | None = None
    references: list[tuple[RawReference, CfgGuard]] = field(default_factory=list)

    def apply(self, spec: _AttrSpec, extra: CfgGuard = _NO_GUARD) -> None:
        name = spec.path[0] if len(spec.path) == 1 else None
        items = _tree_items(spec.arguments) if spec.arguments is not None else []

        if name == "cfg":
            self.guard = self.guard.merge(_guard_from_items(items))
        elif name == "cfg_attr":
            parts = _split_items(items)
            if not parts:
                return
            condition = extra.merge(_guard_from_items(parts[0]))
            if condition.disabled:
                return
            for part in parts[1:]:
                nested = _nested_spec(part)
                if nested is not None:
                    self.apply(nested, condition)
        elif name in ("test", "bench"):
            self.guard = self.guard.merge(CfgGuard(test_only=True))
        elif name == "macro_use":
            self.macro_use = True
        elif name == "macro_export":
            self.macro_export = True
        elif name == "path":
            if spec.value is not None:
                self.path_attr = spec.value
        else:
            if len(spec.path) > 1 and spec.path[0] not in _TOOL_NAMESPACES | _PATH_KEYWORDS:
                self.references.append(
                    (RawReference(spec.path[0], RefKind.ATTRIBUTE, spec.line, "::".join(spec.path)), extra)
                )
            if spec.arguments is not None:
                for ref in _token_tree_references(spec.arguments, RefKind.ATTRIBUTE):
                    # lint paths such as ``allow(clippy::all)``
                    if ref.root not in _TOOL_NAMESPACES:
                        self.references.append((ref, extra))


def _collect_attributes(items: list[Node]) -> _Attributes:
    attrs = _Attributes()
    for item in items:
        spec = _attribute_spec(item)
        if spec is not None:
            attrs.apply(spec)
    return attrs


# ── paths ────────────────────────────────────────────────────────────────


def _path_root(node: Node) -> str | None:
    """First segment of a scoped path, ``None`` for relative or qualified roots."""
    current = node
    while True:
        path = current.child_by_field_name("path")
        if path is None:
            # ``::name``
            name = current.child_by_field_name("name")
            root = _text(name) if name is not None and name.type == "identifier" else None
            break
        if path.type in _SCOPED:
            current = path
            continue
        root = _text(path) if path.type == "identifier" else None
        break
    if root is None or root in _PATH_KEYWORDS:
        return None
    return root


def _use_roots(node: Node) -> list[tuple[str, str, int]]:
    """``(root, text, line)`` for each extern root a use tree names."""
    kind = node.type
    if kind == "identifier":
        text = _text(node)
        return [] if text in _PATH_KEYWORDS else [(text, text, _line(node))]
    if kind == "scoped_identifier":
        root = _path_root(node)
        return [(root, _compact(node), _line(node))] if root else []
    if kind == "use_as_clause":
        path = node.child_by_field_name("path")
        return _use_roots(path) if path is not None else []
    if kind == "scoped_use_list":
        path = node.child_by_field_name("path")
        if path is not None:
            return _use_roots(path)
        group = node.child_by_field_name("list")
        return _use_roots(group) if group is not None else []
    if kind in ("use_list", "use_wildcard"):
        roots: list[tuple[str, str, int]] = []
        for child in node.named_children:
            roots.extend(_use_roots(child))
        return roots
    return []


# ── documentation tests ──────────────────────────────────────────────────


def _doc_style(node: Node) -> str | None:
    text = _text(node)
    if node.type == "line_comment":
        if text.startswith("///") and not text.startswith("////"):
            return "outer"
        if text.startswith("//!"):
            return "inner"
        return None
    if text.startswith("/**") and not text.startswith("/***") and text != "/**/":
        return "outer"
    if text.startswith("/*!"):
        return "inner"
    return None


def _doc_lines(comments: list[Node]) -> list[tuple[int, str]]:
    """Markdown lines of a run of doc comments, with their 0-based file rows."""
    lines: list[tuple[int, str]] = []
    for comment in comments:
        text = _text(comment).rstrip("\r\n")
        row = comment.start_point[0]
        if comment.type == "line_comment":
            body = text[3:]
            lines.append((row, body[1:] if body.startswith(" ") else body))
            continue
        for offset, raw in enumerate(text[3:-2].split("\n")):
            body = raw.strip()
            if body.startswith("*"):
                body = body[1:]
            lines.append((row + offset, body[1:] if body.startswith(" ") else body))
    return lines


def _is_rust_block(info: str) -> bool:
    tags = [t for t in re.split(r"[\s,]+", info.strip()) if t]
    return all(t in _DOCTEST_TAGS or t.startswith(("edition", "ignore-")) for t in tags)


def _unhide(line: str) -> str:
    """rustdoc hides ``# `` lines from the rendered docs but still compiles them."""
    stripped = line.lstrip()
    if stripped == "#":
        return ""
    if stripped.startswith("# "):
        return stripped[2:]
    if stripped.startswith("##"):
        return stripped[1:]
    return line


def _doctest_blocks(lines: list[tuple[int, str]]) -> list[list[tuple[int, str]]]:
    blocks: list[list[tuple[int, str]]] = []
    current: list[tuple[int, str]] | None = None
    fence = ""
    rust = False
    for row, line in lines:
        match = _FENCE.match(line)
        if current is None:
            if match is not None:
                fence, rust, current = match.group(1), _is_rust_block(match.group(2)), []
            continue
        if (
            match is not None
            and not match.group(2).strip()
            and match.group(1)[0] == fence[0]
            and len(match.group(1)) >= len(fence)
        ):
            if rust and current:
                blocks.append(current)
            current = None
            continue
        current.append((row, _unhide(line)))
    if current and rust:
        # an unclosed fence runs to the end of the comment
        blocks.append(current)
    return blocks


# ── walker ───────────────────────────────────────────────────────────────


class _SyntaxWalker:
    def __init__(self, path: str, doc_tests: bool) -> None:
        self.path = path
        self.doc_tests = doc_tests
        self.local_modules: set[str] = set()
        self.result = SourceSyntax()

    def add(self, ref: RawReference, guard: CfgGuard) -> None:
        guard = guard.merge(ref.guard)
        if guard.disabled:
            return
        self.result.references.append(replace(ref, guard=guard))

    def walk(self, root: Node) -> SourceSyntax:
        self._children(root, _NO_GUARD, ())
        self.result.references = [
            r
            for r in self.result.references
            if r.doc_test
            or r.root not in self.local_modules
            or r.kind in (RefKind.EXTERN_CRATE, RefKind.LINK, RefKind.BARE_MACRO)
        ]
        return self.result

    def _children(self, node: Node, guard: CfgGuard, inline_path: tuple[str, ...]) -> None:
        inner = [c for c in node.children if c.type == "inner_attribute_item"]
        if inner:
            attrs = _collect_attributes(inner)
            guard = guard.merge(attrs.guard)
            if node.type == "source_file":
                self.result.file_guard = self.result.file_guard.merge(attrs.guard)
            for ref, extra in attrs.references:
                self.add(ref, guard.merge(extra))
        if guard.disabled:
            return

        spread = node.type not in _SEQUENCES
        pending: list[Node] = []
        docs: list[Node] = []
        for child in node.children:
            kind = child.type
            if kind == "inner_attribute_item" or not child.is_named:
                continue
            if kind == "attribute_item":
                pending.append(child)
                continue
            if kind in _COMMENTS:
                if _doc_style(child) is not None:
                    docs.append(child)
                continue
            attrs = _collect_attributes(pending) if pending else None
            pending = []
            item_guard = guard.merge(attrs.guard) if attrs is not None else guard
            if docs:
                self._doc_tests(docs, item_guard)
                docs = []
            if attrs is not None:
                for ref, extra in attrs.references:
                    self.add(ref, item_guard.merge(extra))
                if spread:
                    guard = item_guard
            self._visit(child, item_guard, inline_path, attrs)
        if docs:
            self._doc_tests(docs, guard)

    def _visit(
        self,
        node: Node,
        guard: CfgGuard,
        inline_path: tuple[str, ...],
        attrs: _Attributes | None = None,
    ) -> None:
        if guard.disabled:
            return
        kind = node.type
        if kind == "use_declaration":
            argument = node.child_by_field_name("argument")
            if argument is not None:
                for root, text, line in _use_roots(argument):
                    self.add(RawReference(root, RefKind.USE, line, text), guard)
        elif kind == "extern_crate_declaration":
            name = node.child_by_field_name("name")
            if name is not None and name.type == "identifier":
                crate = _text(name)
                self.add(
                    RawReference(
                        crate,
                        RefKind.EXTERN_CRATE,
                        _line(name),
                        f"extern crate {crate}",
                        macro_use=attrs is not None and attrs.macro_use,
                    ),
                    guard,
                )
        elif kind == "mod_item":
            self._mod(node, guard, inline_path, attrs)
        elif kind == "macro_definition":
            name = node.child_by_field_name("name")
            if name is not None and attrs is not None and attrs.macro_export:
                self.result.exported_macros.add(_text(name))
            for rule in node.named_children:
                if rule.type == "macro_rule":
                    body = rule.child_by_field_name("right")
                    if body is not None:
                        self._token_tree(body, guard)
        elif kind == "macro_invocation":
            self._macro_invocation(node, guard)
        elif kind in _SCOPED:
            self._scoped(node, guard, inline_path, record=True)
        elif kind in _STRINGS:
            value = _string_value(node)
            link = _link_reference(value, node) if value is not None else None
            if link is not None:
                self.add(link, guard)
        elif kind == "token_tree":
            self._token_tree(node, guard)
        else:
            self._children(node, guard, inline_path)

    def _scoped(
        self, node: Node, guard: CfgGuard, inline_path: tuple[str, ...], record: bool
    ) -> None:
        if record:
            root = _path_root(node)
            if root is not None:
                self.add(RawReference(root, RefKind.PATH, _line(node), _compact(node)), guard)
        path = node.child_by_field_name("path")
        for child in node.named_children:
            if path is not None and child.id == path.id and child.type in _SCOPED:
                # a prefix of the path just recorded
                self._scoped(child, guard, inline_path, record=False)
            else:
                self._visit(child, guard, inline_path)

    def _macro_invocation(self, node: Node, guard: CfgGuard) -> None:
        macro = node.child_by_field_name("macro")
        if macro is not None and macro.type == "identifier":
            name = _text(macro)
            self.add(RawReference(name, RefKind.BARE_MACRO, _line(macro), f"{name}!"), guard)
        elif macro is not None and macro.type in _SCOPED:
            root = _path_root(macro)
            if root is not None:
                self.add(RawReference(root, RefKind.MACRO, _line(macro), _compact(macro)), guard)
        for child in node.named_children:
            if child.type == "token_tree":
                self._token_tree(child, guard)

    def _token_tree(self, tree: Node, guard: CfgGuard) -> None:
        for ref in _token_tree_references(tree):
            self.add(ref, guard)

    def _mod(
        self,
        node: Node,
        guard: CfgGuard,
        inline_path: tuple[str, ...],
        attrs: _Attributes | None,
    ) -> None:
        name = node.child_by_field_name("name")
        if name is None:
            return
        module = _text(name)
        self.local_modules.add(module)
        body = node.child_by_field_name("body")
        if body is None:
            self.result.modules.append(
                ModDecl(
                    name=module,
                    line=_line(name),
                    inline_path=inline_path,
                    path_attr=attrs.path_attr if attrs is not None else None,
                    guard=guard,
                )
            )
        else:
            self._children(body, guard, (*inline_path, module))

    def _doc_tests(self, comments: list[Node], guard: CfgGuard) -> None:
        if not self.doc_tests or guard.disabled:
            return
        doc_guard = guard.merge(CfgGuard(test_only=True))
        for block in _doctest_blocks(_doc_lines(comments)):
            rows = [row for row, _ in block]
            snippet = _parse("\n".join(text for _, text in block)).root_node
            # rustdoc compiles the snippet, so take what the parser recovers
            found = _SyntaxWalker(self.path, doc_tests=False).walk(snippet)
            for ref in found.references:
                row = rows[min(ref.line, len(rows)) - 1]
                self.add(replace(ref, line=row + 1, doc_test=True), doc_guard)


def _parse(source: str) -> Tree:
    return Parser(RUST_LANGUAGE).parse(source.encode("utf-8"))


def _first_error(node: Node) -> Node:
    for child in node.children:
        if child.is_error or child.is_missing:
            return child
        if child.has_error:
            return _first_error(child)
    return node


def parse_source(source: str, path: str = "<source>", doc_tests: bool = True) -> SourceSyntax:
    """Extract references and module declarations from Rust *source*.

    With *doc_tests* set, fenced Rust blocks in doc comments are parsed too
    and their references come back with ``doc_test`` set.

    Raises :class:`UnparsableSourceError` when the source does not parse.
    """
    root = _parse(source).root_node
    if root.has_error:
        node = _first_error(root)
        message = f"expected '{node.type}'" if node.is_missing else "syntax error"
        raise UnparsableSourceError(path, message, line=_line(node))
    try:
        return _SyntaxWalker(path, doc_tests).walk(root)
    except RecursionError:
        raise UnparsableSourceError(path, "nesting too deep") from None
