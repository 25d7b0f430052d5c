"""Tests for the token-tree lexer."""

from __future__ import annotations

import pytest

from modernity.errors import MacroExpansionError
from modernity.syntax.tokens import Group, Token, is_ident, is_punct, render, tokenize


def test_tokenize_groups_delimiters() -> None:
    trees = tokenize('let x = a::b(1, "s");')

    assert trees[0] == Token("ident", "let")
    assert trees[4] == Token("punct", "::")
    group = trees[6]
    assert isinstance(group, Group)
    assert group.delimiter == "("
    assert group.trees == (Token("literal", "1"), Token("punct", ","), Token("literal", '"s"'))
    assert render(trees) == 'let x = a :: b (1 , "s") ;'


def test_tokenize_skips_comments_including_nested_blocks() -> None:
    trees = tokenize("a // trailing\n /* outer /* inner */ still */ b")

    assert [tree.text for tree in trees] == ["a", "b"]


def test_tokenize_distinguishes_lifetimes_from_chars() -> None:
    trees = tokenize("&'a str == 'a'")

    assert trees[1] == Token("lifetime", "'a")
    assert trees[-1] == Token("literal", "'a'")


def test_tokenize_reads_raw_strings_and_raw_identifiers() -> None:
    trees = tokenize('r#"quote " inside"# r#try 1_000u64')

    assert trees[0] == Token("literal", 'r#"quote " inside"#')
    assert trees[1] == Token("ident", "r#try")
    assert trees[2] == Token("literal", "1_000u64")


def test_tokenize_prefers_longest_operators() -> None:
    trees = tokenize("a <<= b ..= c => d")

    assert [tree.text for tree in trees if tree.kind == "punct"] == ["<<=", "..=", "=>"]


@pytest.mark.parametrize("text", ["(a]", "a)", "{ b", "/* never closed", 'r#"open'])
def test_tokenize_rejects_unbalanced_input(text: str) -> None:
    with pytest.raises(MacroExpansionError):
        tokenize(text)


def test_predicates_check_kind_and_text() -> None:
    ident, punct = Token("ident", "vec"), Token("punct", "!")

    assert is_ident(ident)
    assert is_ident(ident, "vec")
    assert not is_ident(ident, "println")
    assert is_punct(punct, "!")
    assert not is_punct(ident, "vec")
    assert not is_ident(None)
