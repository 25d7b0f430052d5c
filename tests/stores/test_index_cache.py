"""Tests for the std index cache store."""

from __future__ import annotations

import json
from pathlib import Path

from modernity.stores import IndexCache


def test_index_cache_round_trip(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache" / "std-index.json"
    cache = IndexCache(cache_path)
    payload = {"items": {"c": {"std": {"k": "crate"}}}, "aliases": [], "units": []}
    cache.store("std-index", signature="sig-1", fingerprint="fp-abc", payload=payload)
    cache.persist()

    loaded = IndexCache(cache_path)

    assert loaded.get("std-index", signature="sig-1", fingerprint="fp-abc") == payload
    assert sorted(p.name for p in cache_path.parent.iterdir()) == ["std-index.json"]


def test_index_cache_invalidates_on_signature_or_fingerprint_change(tmp_path: Path) -> None:
    cache = IndexCache(tmp_path / "cache.json")
    cache.store("std-index", signature="sig-1", fingerprint="fp", payload={"items": {}})

    assert cache.get("std-index", signature="sig-1", fingerprint="fp") is not None
    assert cache.get("std-index", signature="sig-2", fingerprint="fp") is None
    assert cache.get("std-index", signature="sig-1", fingerprint="fp-changed") is None
    assert cache.get("other", signature="sig-1", fingerprint="fp") is None


def test_index_cache_ignores_corrupt_files(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    cache_path.write_text("{not json", encoding="utf-8")

    cache = IndexCache(cache_path)

    assert cache.get("std-index", signature="s", fingerprint="f") is None


def test_index_cache_drops_entries_missing_fields(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    cache_path.write_text(
        json.dumps(
            {
                "version": 1,
                "entries": {
                    "complete": {"signature": "s", "fingerprint": "f", "payload": {"ok": True}},
                    "partial": {"signature": "s", "payload": {}},
                },
            }
        ),
        encoding="utf-8",
    )

    cache = IndexCache(cache_path)

    assert cache.get("complete", signature="s", fingerprint="f") == {"ok": True}
    assert cache.get("partial", signature="s", fingerprint="f") is None


def test_index_cache_without_path_never_writes(tmp_path: Path) -> None:
    cache = IndexCache(None)
    cache.store("std-index", signature="s", fingerprint="f", payload={})
    cache.persist()

    assert cache.path is None
    assert list(tmp_path.iterdir()) == []
