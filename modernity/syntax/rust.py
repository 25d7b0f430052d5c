"""Tree-sitter helpers for parsing Rust sources."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

from ..models import ParsedFragment

RUST_LANGUAGE = Language(tree_sitter_rust.language())

EXPANSION_WRAPPER = "__modernity_expansion"

_SEGMENT_RE = re.compile(r"^(?:r#)?[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class UseEntry:
    """A single leaf of a ``use`` tree."""

    segments: Tuple[str, ...]
    local: Optional[str]
    glob: bool = False


class RustParser:
    """Parses Rust source with tree-sitter; one instance per worker."""

    def __init__(self) -> None:
        self._parser = Parser(RUST_LANGUAGE)

    def parse(self, source: bytes) -> Tree:
        return self._parser.parse(source)

    def parse_fragment(self, text: str) -> Optional[ParsedFragment]:
        """Parse macro output as a function body; None when it is not valid there."""
        wrapped = f"fn {EXPANSION_WRAPPER}() {{\n{text}\n}}\n"
        tree = self._parser.parse(wrapped.encode("utf-8"))
        if tree.root_node.has_error:
            return None
        function = tree.root_node.named_children[0] if tree.root_node.named_children else None
        body = function.child_by_field_name("body") if function is not None else None
        if body is None:
            return None
        return ParsedFragment(text=text, tree=tree, nodes=list(body.named_children))


def node_text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="ignore")


def first_error(root: Node) -> Optional[Tuple[int, int]]:
    """Return the 1-based (line, column) of the first syntax error under ``root``."""
    if not root.has_error:
        return None
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_error or node.is_missing:
            row, column = node.start_point
            return row + 1, column + 1
        children = [child for child in node.children if child.has_error or child.is_missing]
        stack.extend(reversed(children))
    row, column = root.start_point
    return row + 1, column + 1


def walk(roots: Iterable[Node], skip: FrozenSet[str] = frozenset()) -> Iterator[Node]:
    """Pre-order traversal that does not descend into node types in ``skip``."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        if node.type in skip:
            continue
        stack.extend(reversed(node.children))


def path_segments(text: str) -> Optional[List[str]]:
    """Split a Rust path such as ``std::vec::Vec::<u8>::new`` into identifiers."""
    compact = "".join(text.split())
    if not compact or compact.startswith("<"):
        return None
    kept: List[str] = []
    depth = 0
    index = 0
    while index < len(compact):
        char = compact[index]
        if compact.startswith("->", index):
            index += 2
            continue
        if char == "<":
            depth += 1
        elif char == ">":
            depth = max(0, depth - 1)
        elif depth == 0:
            kept.append(char)
        index += 1
    segments = [segment for segment in "".join(kept).split("::") if segment]
    if not segments or not all(_SEGMENT_RE.match(segment) for segment in segments):
        return None
    return [segment[2:] if segment.startswith("r#") else segment for segment in segments]


def use_entries(node: Optional[Node], prefix: Tuple[str, ...] = ()) -> Iterator[UseEntry]:
    """Flatten the argument of a ``use`` declaration into leaf entries."""
    if node is None:
        return
    kind = node.type
    if kind == "use_list":
        for child in node.named_children:
            yield from use_entries(child, prefix)
    elif kind == "scoped_use_list":
        path = node.child_by_field_name("path")
        segments = tuple(path_segments(node_text(path)) or ()) if path is not None else ()
        yield from use_entries(node.child_by_field_name("list"), prefix + segments)
    elif kind == "use_as_clause":
        segments = path_segments(node_text(node.child_by_field_name("path")))
        alias = node_text(node.child_by_field_name("alias"))
        if segments is not None:
            full = _drop_trailing_self(prefix + tuple(segments))
            yield UseEntry(full, alias if alias != "_" else None)
    elif kind == "use_wildcard":
        inner = node.named_children[0] if node.named_children else None
        segments = tuple(path_segments(node_text(inner)) or ()) if inner is not None else ()
        yield UseEntry(prefix + segments, None, glob=True)
    else:
        segments = path_segments(node_text(node))
        if segments is None:
            return
        full = prefix + tuple(segments)
        if full and full[-1] == "self":
            full = full[:-1]
        if full:
            yield UseEntry(full, full[-1])


def _drop_trailing_self(segments: Tuple[str, ...]) -> Tuple[str, ...]:
    return segments[:-1] if segments and segments[-1] == "self" else segments


def macro_name(invocation: Node) -> str:
    """Return the invoked macro path of a ``macro_invocation`` node."""
    return "".join(node_text(invocation.child_by_field_name("macro")).split())


def macro_arguments(invocation: Node) -> Optional[Node]:
    for child in invocation.children:
        if child.type == "token_tree":
            return child
    return None


def has_modifier(function: Node, keyword: str) -> bool:
    """True when a function item carries ``keyword`` (``async``, ``unsafe``, ``const``)."""
    for child in function.children:
        if child.type == "function_modifiers":
            return any(modifier.type == keyword for modifier in child.children)
    return False


def inside_unsafe(node: Node) -> bool:
    """True when ``node`` sits in an ``unsafe`` block or an ``unsafe fn`` body."""
    parent = node.parent
    while parent is not None:
        if parent.type == "unsafe_block":
            return True
        if parent.type == "function_item":
            return has_modifier(parent, "unsafe")
        parent = parent.parent
    return False


def preceding_attributes(node: Node) -> List[str]:
    """Texts of the ``#[...]`` attribute items directly above ``node``."""
    attributes: List[str] = []
    sibling = node.prev_named_sibling
    while sibling is not None and sibling.type in ("attribute_item", "line_comment", "block_comment"):
        if sibling.type == "attribute_item":
            attributes.append(node_text(sibling))
        sibling = sibling.prev_named_sibling
    attributes.reverse()
    return attributes


__all__ = [
    "EXPANSION_WRAPPER",
    "RUST_LANGUAGE",
    "RustParser",
    "UseEntry",
    "first_error",
    "has_modifier",
    "inside_unsafe",
    "macro_arguments",
    "macro_name",
    "node_text",
    "path_segments",
    "preceding_attributes",
    "use_entries",
    "walk",
]
