"""Measure the modernity of published Rust crates across their release history."""

__version__ = "0.1.0"
