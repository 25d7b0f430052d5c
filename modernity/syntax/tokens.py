"""Lexing Rust source text into token trees."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from ..errors import MacroExpansionError

_OPEN = {"(": ")", "[": "]", "{": "}"}

# Longest operators first so the alternation prefers them.
_PUNCT = sorted(
    [
        "<<=", ">>=", "...", "..=", "::", "->", "=>", "==", "!=", "<=", ">=", "&&", "||",
        "+=", "-=", "*=", "/=", "%=", "^=", "&=", "|=", "<<", ">>", "..",
        "+", "-", "*", "/", "%", "^", "!", "&", "|", "=", "<", ">", "@", ".", ",", ";",
        ":", "#", "$", "?", "~",
    ],
    key=len,
    reverse=True,
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<line_comment>//[^\n]*)
  | (?P<block_comment>/\*)
  | (?P<raw_string>(?:br|cr|r)(?P<hashes>\#*)")
  | (?P<string>(?:b|c)?"(?:\\.|[^"\\])*")
  | (?P<char>b?'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F_]{1,6}\}|.)|[^'\\\n])')
  | (?P<lifetime>'[A-Za-z_][A-Za-z0-9_]*)
  | (?P<number>(?:0x[0-9a-fA-F_]+|0o[0-7_]+|0b[01_]+|[0-9][0-9_]*(?:\.[0-9][0-9_]*)?(?:[eE][+-]?[0-9_]+)?)(?:[a-zA-Z_][a-zA-Z0-9_]*)?)
  | (?P<ident>(?:r\#)?[A-Za-z_][A-Za-z0-9_]*)
  | (?P<open>[(\[{])
  | (?P<close>[)\]}])
  | (?P<punct>"""
    + "|".join(re.escape(op) for op in _PUNCT)
    + r""")
    """,
    re.VERBOSE | re.DOTALL,
)


@dataclass(frozen=True)
class Token:
    """A leaf token: ``ident``, ``lifetime``, ``literal`` or ``punct``."""

    kind: str
    text: str


@dataclass(frozen=True)
class Group:
    """A delimited token tree."""

    delimiter: str
    trees: Tuple["TokenTree", ...]

    @property
    def closing(self) -> str:
        return _OPEN[self.delimiter]


TokenTree = Union[Token, Group]


def tokenize(text: str) -> Tuple[TokenTree, ...]:
    """Lex ``text`` into a sequence of token trees."""
    stack: List[Tuple[str, List[TokenTree]]] = [("", [])]
    pos = 0
    length = len(text)
    while pos < length:
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise MacroExpansionError(f"unexpected character {text[pos]!r} at offset {pos}")
        kind = match.lastgroup
        if kind == "hashes":
            kind = "raw_string"
        end = match.end()
        if kind in ("ws", "line_comment"):
            pos = end
            continue
        if kind == "block_comment":
            pos = _skip_block_comment(text, pos)
            continue
        if kind == "raw_string":
            hashes = match.group("hashes") or ""
            terminator = '"' + hashes
            close = text.find(terminator, end)
            if close < 0:
                raise MacroExpansionError(f"unterminated raw string at offset {pos}")
            end = close + len(terminator)
            stack[-1][1].append(Token("literal", text[pos:end]))
        elif kind in ("string", "char", "number"):
            stack[-1][1].append(Token("literal", match.group(kind)))
        elif kind == "lifetime":
            stack[-1][1].append(Token("lifetime", match.group(kind)))
        elif kind == "ident":
            stack[-1][1].append(Token("ident", match.group(kind)))
        elif kind == "open":
            stack.append((match.group(kind), []))
        elif kind == "close":
            closing = match.group(kind)
            if len(stack) == 1 or _OPEN[stack[-1][0]] != closing:
                raise MacroExpansionError(f"unbalanced {closing!r} at offset {pos}")
            delimiter, trees = stack.pop()
            stack[-1][1].append(Group(delimiter, tuple(trees)))
        else:
            stack[-1][1].append(Token("punct", match.group(kind)))
        pos = end
    if len(stack) != 1:
        raise MacroExpansionError(f"unclosed {stack[-1][0]!r} delimiter")
    return tuple(stack[0][1])


def _skip_block_comment(text: str, pos: int) -> int:
    depth = 0
    index = pos
    while index < len(text):
        if text.startswith("/*", index):
            depth += 1
            index += 2
        elif text.startswith("*/", index):
            depth -= 1
            index += 2
            if depth == 0:
                return index
        else:
            index += 1
    raise MacroExpansionError(f"unterminated block comment at offset {pos}")


def render(trees: Sequence[TokenTree]) -> str:
    """Render token trees back to source text, one space between tokens."""
    parts: List[str] = []
    for tree in trees:
        if isinstance(tree, Group):
            parts.append(tree.delimiter + render(tree.trees) + tree.closing)
        else:
            parts.append(tree.text)
    return " ".join(parts)


def is_punct(tree: Optional[TokenTree], text: str) -> bool:
    return isinstance(tree, Token) and tree.kind == "punct" and tree.text == text


def is_ident(tree: Optional[TokenTree], text: str | None = None) -> bool:
    if not isinstance(tree, Token) or tree.kind != "ident":
        return False
    return text is None or tree.text == text


__all__ = ["Group", "Token", "TokenTree", "is_ident", "is_punct", "render", "tokenize"]
