"""Collection of syntax facts from a SyntaxForest into a commutative tally."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from tree_sitter import Node

from ..models import Definition, MacroResolution, SyntaxForest
from ..stdlib.index import StdIndex
from ..syntax.rust import has_modifier, node_text, path_segments, use_entries, walk

EXPRS = "exprs"
UNSAFE_EXPRS = "unsafe_exprs"
FUNCTIONS = "functions"
ASYNC_FUNCTIONS = "async_functions"
IMPL_TRAIT_FUNCTIONS = "impl_trait_functions"
LET_STATEMENTS = "let_statements"
LET_ELSE = "let_else"
CLOSURES = "closures"
DYN_TYPES = "dyn_types"
CONST_PARAMS = "const_params"
TRY_OPERATORS = "try_operators"
TRY_MACROS = "try_macros"
MACRO_INVOCATIONS = "macro_invocations"
STD_MACRO_INVOCATIONS = "std_macro_invocations"
LOCAL_EXPANSIONS = "local_expansions"
STD_USES = "std_uses"

EXPRESSION_TYPES = frozenset(
    {
        "array_expression",
        "assignment_expression",
        "async_block",
        "await_expression",
        "binary_expression",
        "boolean_literal",
        "break_expression",
        "call_expression",
        "char_literal",
        "closure_expression",
        "compound_assignment_expression",
        "const_block",
        "continue_expression",
        "field_expression",
        "float_literal",
        "for_expression",
        "gen_block",
        "generic_function",
        "if_expression",
        "index_expression",
        "integer_literal",
        "loop_expression",
        "macro_invocation",
        "match_expression",
        "parenthesized_expression",
        "range_expression",
        "raw_string_literal",
        "reference_expression",
        "return_expression",
        "string_literal",
        "struct_expression",
        "try_block",
        "try_expression",
        "tuple_expression",
        "type_cast_expression",
        "unary_expression",
        "unit_expression",
        "unsafe_block",
        "while_expression",
        "yield_expression",
    }
)

_PATH_EXPRESSION_TYPES = frozenset({"identifier", "scoped_identifier", "self"})

# Parents whose identifier children name, bind or qualify rather than evaluate.
_NAMING_PARENTS = frozenset(
    {
        "array_type",
        "attribute",
        "captured_pattern",
        "closure_parameters",
        "extern_crate_declaration",
        "field_pattern",
        "generic_function",
        "generic_type_with_turbofish",
        "label",
        "lifetime",
        "macro_invocation",
        "mut_pattern",
        "or_pattern",
        "range_pattern",
        "ref_pattern",
        "reference_pattern",
        "scoped_identifier",
        "scoped_type_identifier",
        "self_parameter",
        "slice_pattern",
        "struct_pattern",
        "tuple_pattern",
        "tuple_struct_pattern",
        "type_arguments",
        "visibility_modifier",
    }
)
_NAMING_FIELDS = ("name", "pattern", "type", "alias", "label", "trait", "macro", "path")

_PATH_TYPES = frozenset({"scoped_identifier", "scoped_type_identifier"})
_OPAQUE = frozenset({"token_tree", "macro_definition"})
_LOCAL_ROOTS = frozenset({"crate", "self", "super", "Self"})
_STD_ROOTS = frozenset({"std", "core", "alloc"})


@dataclass
class SyntaxTally:
    """Counts of syntax facts; adding tallies is commutative."""

    counts: Counter = field(default_factory=Counter)
    since_minors: Counter = field(default_factory=Counter)

    def __add__(self, other: "SyntaxTally") -> "SyntaxTally":
        return SyntaxTally(counts=self.counts + other.counts, since_minors=self.since_minors + other.since_minors)

    def __getitem__(self, key: str) -> int:
        return self.counts[key]

    def add_std_use(self, definition: Definition) -> None:
        self.counts[STD_USES] += 1
        minor = since_minor(definition.since)
        if minor is not None:
            self.since_minors[minor] += 1


def since_minor(since: Optional[str]) -> Optional[int]:
    """Minor component of a ``1.N.P`` stability version."""
    if not since:
        return None
    parts = since.strip().split(".")
    if len(parts) < 2 or parts[0] != "1" or not parts[1].isdigit():
        return None
    return int(parts[1])


class TallyCollector:
    """Walks parsed files and macro expansions; one instance per version."""

    def __init__(self, index: StdIndex) -> None:
        self._index = index
        self._resolved: Dict[Tuple[str, ...], Optional[Definition]] = {}

    def collect(self, forest: SyntaxForest) -> SyntaxTally:
        total = SyntaxTally()
        for parsed in forest.parsed_files:
            root = parsed.tree.root_node
            total += self.collect_nodes([root], imports=file_imports(root))
        for entry in forest.macros:
            total += self.macro_facts(entry)
            if entry.expansion is not None:
                total += self.collect_nodes(entry.expansion.nodes, unsafe=entry.unsafe_context)
        return total

    def collect_nodes(
        self,
        nodes: Iterable[Node],
        *,
        unsafe: bool = False,
        imports: Optional[Dict[str, Tuple[str, ...]]] = None,
    ) -> SyntaxTally:
        tally = SyntaxTally()
        counts = tally.counts
        imports = imports or {}
        stack: List[Tuple[Node, bool]] = [(node, unsafe) for node in reversed(list(nodes))]
        while stack:
            node, in_unsafe = stack.pop()
            kind = node.type
            if kind in EXPRESSION_TYPES or (kind in _PATH_EXPRESSION_TYPES and is_path_expression(node)):
                counts[EXPRS] += 1
                if in_unsafe:
                    counts[UNSAFE_EXPRS] += 1

            if kind == "try_expression":
                counts[TRY_OPERATORS] += 1
            elif kind == "let_declaration":
                counts[LET_STATEMENTS] += 1
                if node.child_by_field_name("alternative") is not None:
                    counts[LET_ELSE] += 1
            elif kind == "function_item":
                counts[FUNCTIONS] += 1
                if has_modifier(node, "async"):
                    counts[ASYNC_FUNCTIONS] += 1
                if _signature_uses_impl_trait(node):
                    counts[IMPL_TRAIT_FUNCTIONS] += 1
            elif kind == "closure_expression":
                counts[CLOSURES] += 1
            elif kind == "dynamic_type":
                counts[DYN_TYPES] += 1
            elif kind == "const_parameter":
                counts[CONST_PARAMS] += 1
            elif kind == "use_declaration":
                self._count_use(node, tally)
                continue
            elif kind in _PATH_TYPES:
                # A macro's own path is tallied once, through its resolution entry.
                parent_type = node.parent.type if node.parent is not None else None
                if parent_type not in _PATH_TYPES and parent_type != "macro_invocation":
                    self._count_path(path_segments(node_text(node)), imports, tally)
            elif kind == "type_identifier":
                if _is_type_reference(node):
                    self._count_path([node_text(node)], imports, tally)

            if kind in _OPAQUE:
                continue
            if kind == "function_item":
                child_unsafe = has_modifier(node, "unsafe")
            else:
                child_unsafe = in_unsafe or kind == "unsafe_block"
            stack.extend((child, child_unsafe) for child in reversed(node.children))
        return tally

    def macro_facts(self, entry: MacroResolution) -> SyntaxTally:
        tally = SyntaxTally()
        counts = tally.counts
        if entry.depth == 0:
            counts[MACRO_INVOCATIONS] += 1
            if entry.origin == "std":
                counts[STD_MACRO_INVOCATIONS] += 1
                if entry.definition is not None:
                    tally.add_std_use(entry.definition)
            segments = path_segments(entry.name) or []
            if segments and segments[-1] == "try":
                counts[TRY_MACROS] += 1
        if entry.origin == "local" and entry.expansion is not None:
            counts[LOCAL_EXPANSIONS] += 1
        return tally

    def _count_use(self, node: Node, tally: SyntaxTally) -> None:
        for entry in use_entries(node.child_by_field_name("argument")):
            if entry.segments and entry.segments[0] in _STD_ROOTS:
                definition = self._resolve(entry.segments)
                if definition is not None:
                    tally.add_std_use(definition)

    def _count_path(
        self, segments: Optional[List[str]], imports: Dict[str, Tuple[str, ...]], tally: SyntaxTally
    ) -> None:
        if not segments:
            return
        path = tuple(segments)
        if path[0] in imports:
            path = imports[path[0]] + path[1:]
        if path[0] in _LOCAL_ROOTS:
            return
        definition = self._resolve(path)
        if definition is not None:
            tally.add_std_use(definition)

    def _resolve(self, path: Tuple[str, ...]) -> Optional[Definition]:
        if path in self._resolved:
            return self._resolved[path]
        found: Optional[Definition] = None
        # Members such as ``HashMap::with_capacity`` fall back to their owning item.
        for end in range(len(path), 0, -1):
            definition = self._index.resolve_path(path[:end])
            if definition is not None and definition.kind != "crate":
                found = definition
                break
        self._resolved[path] = found
        return found


def file_imports(root: Node) -> Dict[str, Tuple[str, ...]]:
    """Names brought into scope by the file's ``use`` declarations."""
    imports: Dict[str, Tuple[str, ...]] = {}
    for node in walk([root], _OPAQUE):
        if node.type != "use_declaration":
            continue
        for entry in use_entries(node.child_by_field_name("argument")):
            if entry.local and not entry.glob and entry.segments:
                imports[entry.local] = entry.segments
    return imports


def is_path_expression(node: Node) -> bool:
    """True when an identifier, ``self`` or scoped path is evaluated as an expression."""
    parent = node.parent
    if parent is None or parent.type in _NAMING_PARENTS:
        return False
    if parent.type == "match_pattern":
        return parent.child_by_field_name("condition") == node
    return not any(parent.child_by_field_name(field_name) == node for field_name in _NAMING_FIELDS)


def _signature_uses_impl_trait(function: Node) -> bool:
    roots = [
        child
        for child in (function.child_by_field_name("parameters"), function.child_by_field_name("return_type"))
        if child is not None
    ]
    return any(node.type == "abstract_type" for node in walk(roots, _OPAQUE))


def _is_type_reference(node: Node) -> bool:
    parent = node.parent
    if parent is None or parent.type in ("scoped_type_identifier", "type_parameter", "associated_type"):
        return False
    name = parent.child_by_field_name("name")
    return name is None or name != node


__all__ = ["EXPRESSION_TYPES", "SyntaxTally", "TallyCollector", "file_imports", "is_path_expression", "since_minor"]
