"""Resolution and expansion of the macro invocations found in a crate."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple, Union

from tree_sitter import Node

from ..config import DEFAULT_MACRO_DEPTH
from ..errors import MacroExpansionError, MacroExpansionOverflow
from ..logging import get_logger
from ..models import Definition, MacroResolution, ParsedFile
from ..stdlib.index import EXPANSION_CRATES, StdIndex
from ..syntax.macros import MacroRules, transcribe
from ..syntax.rust import RustParser, inside_unsafe, macro_arguments, macro_name, node_text, path_segments, walk
from ..syntax.tokens import Group, Token, TokenTree, is_ident, is_punct, render, tokenize

logger = get_logger("parsing.macros")

ORIGIN_LOCAL = "local"
ORIGIN_STD = "std"
ORIGIN_UNRESOLVED = "unresolved"

_OPAQUE = frozenset({"token_tree", "macro_definition"})
_LOCAL_PREFIXES = frozenset({"crate", "self"})

LocalDefinition = Union[MacroRules, MacroExpansionError]


class MacroTable:
    """Builds the macro-resolution table for one version's parsed files."""

    def __init__(
        self,
        index: StdIndex,
        parser: RustParser,
        *,
        max_depth: int = DEFAULT_MACRO_DEPTH,
    ) -> None:
        self._index = index
        self._parser = parser
        self._max_depth = max_depth
        self._local: Dict[str, List[LocalDefinition]] = {}
        self._std_rules: Dict[str, Optional[MacroRules]] = {}

    def build(self, files: Sequence[ParsedFile]) -> List[MacroResolution]:
        self._local = collect_local_macros(files)
        entries: List[MacroResolution] = []
        for parsed in files:
            for node in walk([parsed.tree.root_node], _OPAQUE):
                if node.type != "macro_invocation":
                    continue
                entries.extend(self._resolve_top_level(parsed.path, node))
        return entries

    def _resolve_top_level(self, file: str, node: Node) -> List[MacroResolution]:
        name = macro_name(node)
        line = node.start_point[0] + 1
        entry = self._classify(file, name, line, depth=0, unsafe_context=inside_unsafe(node))
        nested: List[MacroResolution] = []
        try:
            self._expand(entry, node, nested)
        except MacroExpansionOverflow as exc:
            entry.error = str(exc)
            nested = []
            logger.debug("%s:%d: %s", file, line, exc)
        return [entry] + nested

    def _classify(self, file: str, name: str, line: int, *, depth: int, unsafe_context: bool) -> MacroResolution:
        entry = MacroResolution(
            file=file, name=name, line=line, origin=ORIGIN_UNRESOLVED, depth=depth, unsafe_context=unsafe_context
        )
        segments = path_segments(name)
        if not segments:
            return entry
        if segments[0] in EXPANSION_CRATES:
            entry.definition = self._index.resolve_macro(name)
        elif len(segments) == 1 and segments[0] in self._local:
            entry.origin = ORIGIN_LOCAL
            return entry
        elif len(segments) == 1:
            entry.definition = self._index.resolve_macro(name)
        elif len(segments) == 2 and segments[0] in _LOCAL_PREFIXES and segments[1] in self._local:
            entry.origin = ORIGIN_LOCAL
            return entry
        if entry.definition is not None:
            entry.origin = ORIGIN_STD
        return entry

    def _expand(self, entry: MacroResolution, node: Node, nested: List[MacroResolution]) -> None:
        """Expand ``entry`` in place, appending entries for invocations inside its expansion."""
        if entry.origin == ORIGIN_UNRESOLVED:
            return
        try:
            trees, builtin = self._expansion_trees(entry, _argument_trees(node))
            text = render(trees) if trees is not None else None
        except MacroExpansionError as exc:
            entry.error = str(exc)
            logger.debug("%s:%d: %s", entry.file, entry.line, exc)
            return
        except RecursionError:
            entry.error = f"expansion of '{entry.name}!' nests too deeply to process"
            logger.debug("%s:%d: %s", entry.file, entry.line, entry.error)
            return
        if text is None:
            return
        fragment = self._parser.parse_fragment(text)
        if fragment is None:
            # Built-ins such as stringify! take arbitrary tokens.
            if not builtin:
                entry.error = f"expansion of '{entry.name}!' is not valid Rust syntax"
            return
        entry.expansion = fragment
        for node in walk(fragment.nodes, _OPAQUE):
            if node.type != "macro_invocation":
                continue
            depth = entry.depth + 1
            if depth > self._max_depth:
                raise MacroExpansionOverflow(entry.name, self._max_depth)
            child = self._classify(
                entry.file,
                macro_name(node),
                entry.line,
                depth=depth,
                unsafe_context=entry.unsafe_context or inside_unsafe(node),
            )
            nested.append(child)
            self._expand(child, node, nested)

    def _expansion_trees(
        self, entry: MacroResolution, arguments: Tuple[TokenTree, ...]
    ) -> Tuple[Optional[Tuple[TokenTree, ...]], bool]:
        """Return the expansion and whether it stands in for a compiler built-in."""
        if entry.origin == ORIGIN_LOCAL:
            segments = path_segments(entry.name) or [entry.name]
            return _expand_local(self._local.get(segments[-1], []), arguments), False
        definition = entry.definition
        if definition is None or not definition.macro_source:
            return None, False
        rules = self._std_macro(definition)
        if rules is None:
            return None, False
        rule, bindings = rules.select(arguments)
        if rule.is_builtin_stub:
            return builtin_arguments(arguments), True
        return transcribe(rule.transcriber, bindings, definition.origin), False

    def _std_macro(self, definition: Definition) -> Optional[MacroRules]:
        key = definition.qualified_name
        if key not in self._std_rules:
            try:
                self._std_rules[key] = MacroRules.parse(definition.macro_source or "")
            except MacroExpansionError as exc:
                logger.debug("Cannot use std macro %s: %s", key, exc)
                self._std_rules[key] = None
        return self._std_rules[key]


def collect_local_macros(files: Sequence[ParsedFile]) -> Dict[str, List[LocalDefinition]]:
    """Parse every ``macro_rules!`` definition, keeping definition order per name."""
    definitions: Dict[str, List[LocalDefinition]] = {}
    for parsed in files:
        for node in walk([parsed.tree.root_node], frozenset({"token_tree"})):
            if node.type != "macro_definition":
                continue
            name = node_text(node.child_by_field_name("name"))
            if name.startswith("r#"):
                name = name[2:]
            if not name:
                continue
            try:
                parsed_rules: LocalDefinition = MacroRules.parse(node_text(node))
            except MacroExpansionError as exc:
                parsed_rules = exc
            definitions.setdefault(name, []).append(parsed_rules)
    return definitions


def _expand_local(candidates: Sequence[LocalDefinition], arguments: Tuple[TokenTree, ...]) -> Tuple[TokenTree, ...]:
    # First definition that accepts the input wins.
    last_error: Optional[MacroExpansionError] = None
    for candidate in candidates:
        if isinstance(candidate, MacroExpansionError):
            last_error = candidate
            continue
        try:
            return candidate.expand(arguments)
        except MacroExpansionError as exc:
            last_error = exc
    raise last_error or MacroExpansionError("no usable macro_rules! definition")


def builtin_arguments(arguments: Sequence[TokenTree]) -> Tuple[TokenTree, ...]:
    """Arguments of a compiler built-in (``format_args!``, ``assert!``) as expression statements.

    The std dumps only carry empty stubs for these macros, so their comma-separated
    arguments are analyzed in place of an expansion. ``name = value`` arguments keep
    the value.
    """
    statements: List[TokenTree] = []
    piece: List[TokenTree] = []
    for tree in list(arguments) + [Token("punct", ",")]:
        if not is_punct(tree, ","):
            piece.append(tree)
            continue
        if len(piece) > 2 and is_ident(piece[0]) and is_punct(piece[1], "="):
            piece = piece[2:]
        if piece:
            statements.extend(piece)
            statements.append(Token("punct", ";"))
        piece = []
    return tuple(statements)


def _argument_trees(node: Node) -> Tuple[TokenTree, ...]:
    arguments = macro_arguments(node)
    if arguments is None:
        raise MacroExpansionError("invocation has no argument token tree")
    trees = tokenize(node_text(arguments))
    if len(trees) == 1 and isinstance(trees[0], Group):
        return trees[0].trees
    return trees


__all__ = ["MacroTable", "ORIGIN_LOCAL", "ORIGIN_STD", "ORIGIN_UNRESOLVED", "builtin_arguments", "collect_local_macros"]
