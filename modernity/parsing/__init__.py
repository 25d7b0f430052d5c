"""Module-graph discovery, parsing and macro resolution for crate sources."""

from .source_parser import SourceParser

__all__ = ["SourceParser"]
