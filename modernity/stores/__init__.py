"""Persistent stores used across runs."""

from .index_cache import IndexCache

__all__ = ["IndexCache"]
