"""Tests for macro resolution and expansion during parsing."""

from __future__ import annotations

from modernity.parsing import SourceParser
from modernity.parsing.macro_table import ORIGIN_LOCAL, ORIGIN_STD, ORIGIN_UNRESOLVED, builtin_arguments
from modernity.stdlib.index import StdIndex
from modernity.syntax.tokens import render, tokenize
from tests._fixtures.crate_builder import EXPANDED_CORE, CrateBuilder, simple_crate


def _macros(crate_builder: CrateBuilder, std_index: StdIndex, body: str, macro_depth: int = 64):
    version = crate_builder.library_version("macros", "0.1.0", simple_crate("macros", "0.1.0", body=body))
    return SourceParser(std_index, macro_depth=macro_depth).parse(version).macros


def test_local_macro_is_expanded(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! square {
    ($x:expr) => { $x * $x };
}

pub fn area(side: u32) -> u32 {
    square!(side + 1)
}
"""
    (entry,) = _macros(crate_builder, std_index, body)

    assert entry.name == "square"
    assert entry.origin == ORIGIN_LOCAL
    assert entry.depth == 0
    assert entry.line == 6
    assert entry.error is None
    assert entry.expansion is not None
    assert entry.expansion.text == "(side + 1) * (side + 1)"


def test_std_macros_resolve_through_the_index(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
pub fn run(name: &str) -> usize {
    println!("hello {}", name);
    let items = vec![1, 2];
    items.len()
}
"""
    println, vec = _macros(crate_builder, std_index, body)

    assert println.origin == ORIGIN_STD
    assert println.definition is not None
    assert println.definition.qualified_name == "std::println!"
    assert println.expansion is not None
    assert "std :: io :: _print" in println.expansion.text
    assert vec.origin == ORIGIN_STD
    assert vec.definition.origin == "alloc"
    assert vec.expansion is not None
    assert "alloc :: vec :: Vec :: new" in vec.expansion.text
    assert vec.expansion.text.count("items . push") == 2


def test_unknown_macros_stay_unresolved(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    (entry,) = _macros(crate_builder, std_index, 'pub fn f() -> String { format!("x") }')

    assert entry.origin == ORIGIN_UNRESOLVED
    assert entry.definition is None
    assert entry.expansion is None


def test_nested_invocations_are_recorded_with_depth(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! inner {
    () => { 1 };
}
macro_rules! outer {
    () => { inner!() + 1 };
}

pub fn two() -> u32 {
    outer!()
}
"""
    outer, inner = _macros(crate_builder, std_index, body)

    assert (outer.name, outer.depth, outer.origin) == ("outer", 0, ORIGIN_LOCAL)
    assert (inner.name, inner.depth, inner.origin) == ("inner", 1, ORIGIN_LOCAL)
    assert inner.line == outer.line
    assert inner.expansion is not None


def test_runaway_recursion_is_cut_off(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! forever {
    () => { forever!() };
}

pub fn spin() {
    forever!();
}
"""
    entries = _macros(crate_builder, std_index, body, macro_depth=4)

    assert len(entries) == 1
    assert entries[0].expansion is not None
    assert "exceeded" in entries[0].error


def test_expansion_failures_are_recorded(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! square {
    ($x:expr) => { $x * $x };
}
macro_rules! bad {
    () => { let = ; };
}

pub fn f() {
    square!();
    bad!();
}
"""
    square, bad = _macros(crate_builder, std_index, body)

    assert square.origin == ORIGIN_LOCAL
    assert square.expansion is None
    assert "no rules" in square.error
    assert bad.expansion is None
    assert "not valid Rust syntax" in bad.error


def test_unsafe_context_is_tracked(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
pub fn f() {
    println!("safe");
    unsafe {
        println!("unsafe");
    }
}

pub unsafe fn g() {
    println!("unsafe fn");
}
"""
    entries = _macros(crate_builder, std_index, body)

    assert [entry.unsafe_context for entry in entries] == [False, True, True]


def test_invocations_inside_macro_definitions_are_ignored(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! wrapper {
    () => { println!("only in the definition") };
}
"""
    assert _macros(crate_builder, std_index, body) == []


def test_long_std_macro_invocations_are_expanded(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    elements = ", ".join(str(value) for value in range(2500))
    body = "pub fn table() -> usize {\n    vec![" + elements + "].len()\n}\n"

    (entry,) = _macros(crate_builder, std_index, body)

    assert entry.origin == ORIGIN_STD
    assert entry.error is None
    assert entry.expansion is not None
    assert entry.expansion.text.count("items . push") == 2500


def test_long_token_muncher_invocations_are_expanded(crate_builder: CrateBuilder, std_index: StdIndex) -> None:
    body = """
macro_rules! listed {
    ($($t:tt)*) => { [$($t),*] };
}

pub fn ones() -> usize {
    listed!(%s).len()
}
""" % " ".join(["1"] * 3000)

    (entry,) = _macros(crate_builder, std_index, body)

    assert entry.origin == ORIGIN_LOCAL
    assert entry.error is None
    assert entry.expansion is not None
    assert entry.expansion.text.count("1") == 3000


BUILTIN_FORMAT_ARGS = """
#[macro_export]
#[rustc_builtin_macro]
#[stable(feature = "rust1", since = "1.0.0")]
macro_rules! format_args {
    ($fmt:expr) => {{ /* compiler built-in */ }};
    ($fmt:expr, $($args:tt)*) => {{ /* compiler built-in */ }};
}
"""


def _builtin_index(crate_builder: CrateBuilder) -> StdIndex:
    return StdIndex.load(crate_builder.write_expansions({"core": EXPANDED_CORE + BUILTIN_FORMAT_ARGS}))


def test_builtin_macro_arguments_stand_in_for_the_expansion(crate_builder: CrateBuilder) -> None:
    body = """
pub fn show(text: &str) -> Result<(), std::num::ParseIntError> {
    format_args!("{} {}", text.parse::<u32>()?, width = text.len());
    Ok(())
}
"""
    (entry,) = _macros(crate_builder, _builtin_index(crate_builder), body)

    assert entry.origin == ORIGIN_STD
    assert entry.definition.qualified_name == "core::format_args!"
    assert entry.error is None
    assert entry.expansion is not None
    assert entry.expansion.text == '"{} {}" ; text . parse :: < u32 > () ? ; text . len () ;'


def test_builtin_macro_with_non_expression_arguments_is_left_unexpanded(crate_builder: CrateBuilder) -> None:
    (entry,) = _macros(crate_builder, _builtin_index(crate_builder), 'pub fn f() { format_args!("{}", +); }')

    assert entry.origin == ORIGIN_STD
    assert entry.expansion is None
    assert entry.error is None


def test_builtin_arguments_split_on_top_level_commas() -> None:
    arguments = tokenize('"{}", f(a, b), key = [1, 2],')

    assert render(builtin_arguments(arguments)) == '"{}" ; f (a , b) ; [1 , 2] ;'
