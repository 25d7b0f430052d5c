"""Persistent cache for the built standard-library index.

The std index is expensive to build (three large expansion artifacts are
parsed with tree-sitter), so the serialised index is kept on disk and reused
while the artifacts and the index format are unchanged.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import tempfile
from typing import Any, Dict, Optional

_FORMAT_VERSION = 1


@dataclass
class _CacheEntry:
    signature: str
    fingerprint: str
    payload: Dict[str, Any]
    written_at: str

    @classmethod
    def from_json(cls, raw: object) -> Optional["_CacheEntry"]:
        if not isinstance(raw, dict):
            return None
        signature, fingerprint, payload = raw.get("signature"), raw.get("fingerprint"), raw.get("payload")
        if not isinstance(signature, str) or not isinstance(fingerprint, str) or not isinstance(payload, dict):
            return None
        return cls(signature, fingerprint, payload, str(raw.get("written_at", "")))

    def is_current(self, signature: str, fingerprint: str) -> bool:
        return self.signature == signature and self.fingerprint == fingerprint


class IndexCache:
    """Index payloads keyed by name, validated by format signature and artifact fingerprint."""

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, _CacheEntry] = {}
        self._modified = False
        if path is not None:
            self._entries = _read_entries(path)

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, key: str, *, signature: str, fingerprint: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_current(signature, fingerprint):
            return None
        return entry.payload

    def store(self, key: str, *, signature: str, fingerprint: str, payload: Dict[str, Any]) -> None:
        written_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._entries[key] = _CacheEntry(signature, fingerprint, payload, written_at)
        self._modified = True

    def persist(self) -> None:
        """Write the cache if it changed; the previous file is replaced atomically."""
        if self._path is None or not self._modified:
            return
        document = {
            "version": _FORMAT_VERSION,
            "entries": {key: asdict(entry) for key, entry in self._entries.items()},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle, temporary = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                json.dump(document, stream, sort_keys=True)
            os.replace(temporary, self._path)
        except BaseException:
            Path(temporary).unlink(missing_ok=True)
            raise
        self._modified = False


def _read_entries(path: Path) -> Dict[str, _CacheEntry]:
    # An unreadable or foreign cache behaves like an empty one.
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return {}
    if not isinstance(document, dict) or document.get("version") != _FORMAT_VERSION:
        return {}
    raw_entries = document.get("entries")
    if not isinstance(raw_entries, dict):
        return {}
    entries: Dict[str, _CacheEntry] = {}
    for key, raw in raw_entries.items():
        entry = _CacheEntry.from_json(raw)
        if isinstance(key, str) and entry is not None:
            entries[key] = entry
    return entries


__all__ = ["IndexCache"]
