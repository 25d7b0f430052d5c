"""A ``macro_rules!`` matcher and transcriber over token trees."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import MacroExpansionError
from .tokens import Group, Token, TokenTree, is_ident, is_punct, tokenize

_REPETITION_OPS = frozenset({"*", "+", "?"})

# Tokens that end a greedy fragment at nesting depth zero.
_STOP_TOKENS: Dict[str, FrozenSet[str]] = {
    "expr": frozenset({"=>", ",", ";"}),
    "expr_2021": frozenset({"=>", ",", ";"}),
    "stmt": frozenset({"=>", ",", ";"}),
    "meta": frozenset({"=>", ",", ";"}),
    "pat": frozenset({"=>", ",", "=", "|", "if", "in"}),
    "pat_param": frozenset({"=>", ",", "=", "|", "if", "in"}),
    "path": frozenset({"=>", ",", "=", "|", ";", ":", ">", ">>", "as", "where"}),
    "ty": frozenset({"=>", ",", "=", "|", ";", ":", ">", ">>", "as", "where"}),
    "item": frozenset(),
}

_BINARY_OPERATORS = frozenset(
    {"+", "-", "*", "/", "%", "&&", "||", "==", "!=", "<", ">", "<=", ">=", "|", "&", "^", "<<", ">>", "..", "..=", "as"}
)


@dataclass(frozen=True)
class MetaVar:
    name: str
    fragment: str


@dataclass(frozen=True)
class Repetition:
    patterns: Tuple["Pattern", ...]
    separator: Optional[Token]
    op: str


@dataclass(frozen=True)
class GroupPattern:
    delimiter: str
    patterns: Tuple["Pattern", ...]


Pattern = Union[Token, MetaVar, Repetition, GroupPattern]


@dataclass(frozen=True)
class Fragment:
    """Token trees bound to a single metavariable."""

    kind: str
    trees: Tuple[TokenTree, ...]


@dataclass(frozen=True)
class Repeated:
    """Per-iteration bindings of a metavariable under a repetition."""

    items: Tuple["Binding", ...]


Binding = Union[Fragment, Repeated]
Bindings = Dict[str, Binding]


@dataclass(frozen=True)
class MacroRule:
    matcher: Tuple[Pattern, ...]
    transcriber: Tuple[TokenTree, ...]

    @property
    def is_builtin_stub(self) -> bool:
        """True for rules like ``{{ /* compiler built-in */ }}`` that the compiler expands itself."""
        pending = list(self.transcriber)
        while pending:
            tree = pending.pop()
            if not isinstance(tree, Group):
                return False
            pending.extend(tree.trees)
        return True


@dataclass(frozen=True)
class MacroRules:
    """A parsed ``macro_rules!`` definition."""

    name: str
    rules: Tuple[MacroRule, ...]

    @classmethod
    def parse(cls, source: str) -> "MacroRules":
        """Parse the text of a ``macro_rules! name { ... }`` definition."""
        trees = tokenize(source)
        index = 0
        while index < len(trees) and not is_ident(trees[index], "macro_rules"):
            index += 1
        if index + 3 >= len(trees) or not is_punct(trees[index + 1], "!"):
            raise MacroExpansionError("not a macro_rules! definition")
        name_token, body = trees[index + 2], trees[index + 3]
        if not is_ident(name_token):
            raise MacroExpansionError("macro_rules! definition without a name")
        if not isinstance(body, Group):
            raise MacroExpansionError(f"macro_rules! {_text(name_token)} has no body")
        name = (_text(name_token) or "").replace("r#", "")
        return cls(name=name, rules=_parse_rules(body.trees))

    def select(self, arguments: Sequence[TokenTree]) -> Tuple[MacroRule, Bindings]:
        """Return the first rule matching ``arguments`` with its bindings."""
        for rule in self.rules:
            bindings = match_patterns(rule.matcher, tuple(arguments))
            if bindings is not None:
                return rule, bindings
        raise MacroExpansionError(f"no rules of '{self.name}!' matched the invocation")

    def expand(self, arguments: Sequence[TokenTree], crate_name: str = "crate") -> Tuple[TokenTree, ...]:
        """Expand an invocation with ``arguments``; the first matching rule wins."""
        rule, bindings = self.select(arguments)
        return transcribe(rule.transcriber, bindings, crate_name)


def _text(tree: Optional[TokenTree]) -> Optional[str]:
    return tree.text if isinstance(tree, Token) else None


def _parse_rules(trees: Sequence[TokenTree]) -> Tuple[MacroRule, ...]:
    rules: List[MacroRule] = []
    index = 0
    while index < len(trees):
        if is_punct(trees[index], ";"):
            index += 1
            continue
        if index + 2 >= len(trees):
            raise MacroExpansionError("truncated macro rule")
        matcher, arrow, transcriber = trees[index], trees[index + 1], trees[index + 2]
        if not isinstance(matcher, Group) or not is_punct(arrow, "=>") or not isinstance(transcriber, Group):
            raise MacroExpansionError("malformed macro rule")
        rules.append(MacroRule(matcher=parse_matcher(matcher.trees), transcriber=transcriber.trees))
        index += 3
    if not rules:
        raise MacroExpansionError("macro_rules! definition without rules")
    return tuple(rules)


def parse_matcher(trees: Sequence[TokenTree]) -> Tuple[Pattern, ...]:
    patterns: List[Pattern] = []
    index = 0
    while index < len(trees):
        tree = trees[index]
        following = trees[index + 1] if index + 1 < len(trees) else None
        if is_punct(tree, "$") and following is not None:
            if isinstance(following, Group) and following.delimiter == "(":
                separator, op, consumed = _repetition_suffix(trees, index + 2)
                patterns.append(Repetition(parse_matcher(following.trees), separator, op))
                index += 2 + consumed
                continue
            if (
                is_ident(following)
                and index + 3 < len(trees)
                and is_punct(trees[index + 2], ":")
                and is_ident(trees[index + 3])
            ):
                patterns.append(MetaVar(_text(following) or "", _text(trees[index + 3]) or ""))
                index += 4
                continue
        if isinstance(tree, Group):
            patterns.append(GroupPattern(tree.delimiter, parse_matcher(tree.trees)))
        else:
            patterns.append(tree)
        index += 1
    return tuple(patterns)


def _repetition_suffix(trees: Sequence[TokenTree], index: int) -> Tuple[Optional[Token], str, int]:
    first = trees[index] if index < len(trees) else None
    second = trees[index + 1] if index + 1 < len(trees) else None
    if _text(first) in _REPETITION_OPS:
        return None, _text(first) or "", 1
    if isinstance(first, Token) and _text(second) in _REPETITION_OPS:
        return first, _text(second) or "", 2
    raise MacroExpansionError("repetition without a *, + or ? operator")


# ----------------------------------------------------------------------
# Matching


def match_patterns(patterns: Tuple[Pattern, ...], trees: Tuple[TokenTree, ...]) -> Optional[Bindings]:
    """Return bindings when ``patterns`` match all of ``trees``."""
    for end, bindings in _match_seq(patterns, trees, 0):
        if end == len(trees):
            return bindings
    return None


def _match_seq(patterns: Tuple[Pattern, ...], trees: Tuple[TokenTree, ...], pos: int) -> Iterator[Tuple[int, Bindings]]:
    if not patterns:
        yield pos, {}
        return
    head, rest = patterns[0], patterns[1:]
    for end, head_bindings in _match_one(head, trees, pos):
        for final, rest_bindings in _match_seq(rest, trees, end):
            merged = dict(head_bindings)
            merged.update(rest_bindings)
            yield final, merged


def _match_one(pattern: Pattern, trees: Tuple[TokenTree, ...], pos: int) -> Iterator[Tuple[int, Bindings]]:
    tree = trees[pos] if pos < len(trees) else None
    if isinstance(pattern, Token):
        if isinstance(tree, Token) and tree.text == pattern.text:
            yield pos + 1, {}
    elif isinstance(pattern, GroupPattern):
        if isinstance(tree, Group) and tree.delimiter == pattern.delimiter:
            inner = match_patterns(pattern.patterns, tree.trees)
            if inner is not None:
                yield pos + 1, inner
    elif isinstance(pattern, MetaVar):
        for end in _fragment_ends(pattern.fragment, trees, pos):
            yield end, {pattern.name: Fragment(pattern.fragment, trees[pos:end])}
    else:
        names = binder_names(pattern.patterns)
        for end, iterations in _match_repetition(pattern, trees, pos):
            yield end, {
                name: Repeated(tuple(iteration[name] for iteration in iterations if name in iteration))
                for name in names
            }


@dataclass
class _Attempt:
    """One matched iteration of a repetition and the candidates for the next one."""

    pos: int
    bindings: Optional[Bindings]
    candidates: Iterator[Tuple[int, Bindings]]


def _match_repetition(pattern: Repetition, trees: Tuple[TokenTree, ...], pos: int) -> Iterator[Tuple[int, List[Bindings]]]:
    """Yield (end, iterations), longest first, backtracking one iteration at a time.

    Iterations live on an explicit stack so long repetitions do not nest Python frames.
    """
    stack = [_Attempt(pos, None, _next_iteration(pattern, trees, pos, first=True))]
    while stack:
        top = stack[-1]
        advanced = False
        for end, bindings in top.candidates:
            if end == top.pos:
                continue
            stack.append(_Attempt(end, bindings, _next_iteration(pattern, trees, end, first=False)))
            advanced = True
            break
        if advanced:
            continue
        stack.pop()
        iterations = [attempt.bindings for attempt in stack if attempt.bindings is not None]
        if top.bindings is not None:
            iterations.append(top.bindings)
        if pattern.op != "+" or iterations:
            yield top.pos, iterations


def _next_iteration(
    pattern: Repetition, trees: Tuple[TokenTree, ...], pos: int, *, first: bool
) -> Iterator[Tuple[int, Bindings]]:
    if pattern.op == "?" and not first:
        return iter(())
    start = pos
    if not first and pattern.separator is not None:
        following = trees[pos] if pos < len(trees) else None
        if _text(following) != pattern.separator.text:
            return iter(())
        start = pos + 1
    return _match_seq(pattern.patterns, trees, start)


def _fragment_ends(fragment: str, trees: Tuple[TokenTree, ...], pos: int) -> Iterator[int]:
    tree = trees[pos] if pos < len(trees) else None
    following = trees[pos + 1] if pos + 1 < len(trees) else None
    if fragment == "tt":
        if tree is not None:
            yield pos + 1
    elif fragment == "ident":
        if is_ident(tree) and _text(tree) != "_":
            yield pos + 1
    elif fragment == "lifetime":
        if isinstance(tree, Token) and tree.kind == "lifetime":
            yield pos + 1
    elif fragment == "literal":
        if isinstance(tree, Token) and (tree.kind == "literal" or tree.text in ("true", "false")):
            yield pos + 1
        elif is_punct(tree, "-") and isinstance(following, Token) and following.kind == "literal":
            yield pos + 2
    elif fragment == "block":
        if isinstance(tree, Group) and tree.delimiter == "{":
            yield pos + 1
    elif fragment == "vis":
        if is_ident(tree, "pub"):
            if isinstance(following, Group) and following.delimiter == "(":
                yield pos + 2
            yield pos + 1
        yield pos
    else:
        greedy = _greedy_end(fragment, trees, pos)
        for end in range(greedy, pos, -1):
            yield end


def _greedy_end(fragment: str, trees: Tuple[TokenTree, ...], pos: int) -> int:
    stops = _STOP_TOKENS.get(fragment, _STOP_TOKENS["expr"])
    track_angles = fragment in ("ty", "path")
    angle_depth = 0
    index = pos
    while index < len(trees):
        tree = trees[index]
        if isinstance(tree, Group):
            if track_angles and tree.delimiter == "{" and angle_depth == 0 and index > pos:
                break
            index += 1
            continue
        text = tree.text
        if track_angles and tree.kind == "punct":
            if text == "<":
                angle_depth += 1
            elif text in (">", ">>") and angle_depth > 0:
                angle_depth = max(0, angle_depth - len(text))
                index += 1
                continue
        if angle_depth == 0 and text in stops:
            break
        index += 1
    return index


def binder_names(patterns: Sequence[Pattern]) -> List[str]:
    names: List[str] = []
    for pattern in patterns:
        if isinstance(pattern, MetaVar):
            names.append(pattern.name)
        elif isinstance(pattern, (Repetition, GroupPattern)):
            names.extend(binder_names(pattern.patterns))
    return names


# ----------------------------------------------------------------------
# Transcription


def transcribe(template: Sequence[TokenTree], bindings: Bindings, crate_name: str) -> Tuple[TokenTree, ...]:
    """Substitute ``bindings`` into a rule's transcriber."""
    output: List[TokenTree] = []
    index = 0
    while index < len(template):
        tree = template[index]
        following = template[index + 1] if index + 1 < len(template) else None
        if is_punct(tree, "$") and following is not None:
            if isinstance(following, Group) and following.delimiter == "(":
                separator, consumed = _transcriber_suffix(template, index + 2)
                output.extend(_transcribe_repetition(following.trees, separator, bindings, crate_name))
                index += 2 + consumed
                continue
            if is_ident(following, "crate"):
                output.append(Token("ident", crate_name))
                index += 2
                continue
            name = _text(following)
            if is_ident(following) and name in bindings:
                binding = bindings[name or ""]
                if not isinstance(binding, Fragment):
                    raise MacroExpansionError(f"variable '{name}' is still repeating at this depth")
                output.extend(_substitution(binding))
                index += 2
                continue
        if isinstance(tree, Group):
            output.append(Group(tree.delimiter, transcribe(tree.trees, bindings, crate_name)))
        else:
            output.append(tree)
        index += 1
    return tuple(output)


def _substitution(fragment: Fragment) -> Tuple[TokenTree, ...]:
    # Expression fragments keep their grouping, as rustc's invisible delimiters do.
    if fragment.kind in ("expr", "expr_2021") and len(fragment.trees) > 1:
        if any(_text(tree) in _BINARY_OPERATORS for tree in fragment.trees):
            return (Group("(", fragment.trees),)
    return fragment.trees


def _transcriber_suffix(template: Sequence[TokenTree], index: int) -> Tuple[Optional[Token], int]:
    first = template[index] if index < len(template) else None
    second = template[index + 1] if index + 1 < len(template) else None
    if _text(first) in _REPETITION_OPS:
        return None, 1
    if isinstance(first, Token) and _text(second) in _REPETITION_OPS:
        return first, 2
    raise MacroExpansionError("repetition without a *, + or ? operator in transcriber")


def _transcribe_repetition(
    body: Tuple[TokenTree, ...], separator: Optional[Token], bindings: Bindings, crate_name: str
) -> List[TokenTree]:
    repeating: Dict[str, Repeated] = {}
    for name in _template_names(body):
        binding = bindings.get(name)
        if isinstance(binding, Repeated):
            repeating[name] = binding
    if not repeating:
        raise MacroExpansionError("repetition in transcriber uses no repeating variable")
    lengths = {len(binding.items) for binding in repeating.values()}
    if len(lengths) != 1:
        raise MacroExpansionError("meta-variables repeat with mismatched counts")
    output: List[TokenTree] = []
    for iteration in range(lengths.pop()):
        scoped = dict(bindings)
        for name, binding in repeating.items():
            scoped[name] = binding.items[iteration]
        if iteration and separator is not None:
            output.append(separator)
        output.extend(transcribe(body, scoped, crate_name))
    return output


def _template_names(template: Sequence[TokenTree]) -> List[str]:
    names: List[str] = []
    for index, tree in enumerate(template):
        if isinstance(tree, Group):
            names.extend(_template_names(tree.trees))
        elif is_punct(tree, "$") and index + 1 < len(template) and is_ident(template[index + 1]):
            names.append(_text(template[index + 1]) or "")
    return names


__all__ = ["Bindings", "Fragment", "MacroRule", "MacroRules", "Repeated", "match_patterns", "transcribe"]
