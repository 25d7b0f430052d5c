"""Rust syntax helpers: tree-sitter parsing, token trees and macro_rules! expansion."""

from .rust import RustParser

__all__ = ["RustParser"]
