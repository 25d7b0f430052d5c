"""Standard-library definitions used to resolve paths and macros."""

from .index import StdIndex

__all__ = ["StdIndex"]
