"""Core data models shared across modernity components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union


class _Unavailable:
    """Sentinel for a metric that could not be computed."""

    _instance: Optional["_Unavailable"] = None

    def __new__(cls) -> "_Unavailable":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNAVAILABLE"

    def __reduce__(self) -> str:
        return "UNAVAILABLE"


UNAVAILABLE = _Unavailable()

MetricValue = Union[int, float, _Unavailable]


@dataclass(frozen=True)
class Release:
    """A single published version as reported by the registry."""

    version: str
    published_at: datetime
    yanked: bool
    archive_url: str


@dataclass(frozen=True)
class LibraryVersion:
    """A selected version of a crate, with its extracted source once fetched."""

    name: str
    version: str
    published_at: datetime
    source_root: Optional[Path] = None


@dataclass(frozen=True)
class Definition:
    """A standard-library item found in the expansion artifacts."""

    qualified_name: str
    kind: str
    since: Optional[str]
    public: bool
    origin: str
    macro_source: Optional[str] = None


@dataclass(frozen=True)
class ExpandedLibraryUnit:
    """One loaded expansion artifact (std, core or alloc)."""

    origin: str
    path: Path
    fingerprint: str
    definitions: int


@dataclass
class ParsedFile:
    """A source file that parsed cleanly."""

    path: str
    tree: Any
    source: bytes

    @property
    def parsed(self) -> bool:
        return True


@dataclass
class SkippedFile:
    """A reachable source file excluded from metrics, with the reason."""

    path: str
    reason: str
    position: Optional[Tuple[int, int]] = None

    @property
    def parsed(self) -> bool:
        return False


FileOutcome = Union[ParsedFile, SkippedFile]


@dataclass
class ParsedFragment:
    """A parsed macro expansion; ``nodes`` are its top-level syntax nodes."""

    text: str
    tree: Any
    nodes: List[Any]


@dataclass
class MacroResolution:
    """How a single macro invocation was resolved."""

    file: str
    name: str
    line: int
    origin: str
    depth: int = 0
    unsafe_context: bool = False
    definition: Optional[Definition] = None
    expansion: Optional[ParsedFragment] = None
    error: Optional[str] = None


@dataclass
class SyntaxForest:
    """Parsed representation of one version's reachable source files."""

    version: LibraryVersion
    files: List[FileOutcome] = field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None
    macros: List[MacroResolution] = field(default_factory=list)

    @property
    def parsed_files(self) -> List[ParsedFile]:
        return [outcome for outcome in self.files if isinstance(outcome, ParsedFile)]

    @property
    def skipped_files(self) -> List[SkippedFile]:
        return [outcome for outcome in self.files if isinstance(outcome, SkippedFile)]


class MetricVector(Mapping[str, MetricValue]):
    """Ordered, immutable mapping of metric name to value."""

    def __init__(self, items: Sequence[Tuple[str, MetricValue]]) -> None:
        self._items: Tuple[Tuple[str, MetricValue], ...] = tuple(items)
        self._index: Dict[str, MetricValue] = dict(self._items)
        if len(self._index) != len(self._items):
            raise ValueError("metric names must be unique")

    def __getitem__(self, key: str) -> MetricValue:
        return self._index[key]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MetricVector):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        inner = ", ".join(f"{name}={value!r}" for name, value in self._items)
        return f"MetricVector({inner})"

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._items)


@dataclass(frozen=True)
class VersionFailure:
    """A version that was dropped from the report, with its error category."""

    version: str
    category: str
    reason: str


@dataclass
class LibraryReport:
    """Rows for one crate, strictly ascending by release timestamp."""

    name: str
    rows: List[Tuple[LibraryVersion, MetricVector]] = field(default_factory=list)
    failures: List[VersionFailure] = field(default_factory=list)

    @classmethod
    def assemble(
        cls,
        name: str,
        rows: Sequence[Tuple[LibraryVersion, MetricVector]],
        failures: Sequence[VersionFailure] = (),
    ) -> "LibraryReport":
        """Order rows by timestamp and drop duplicate versions or timestamps."""
        ordered = sorted(rows, key=lambda row: (row[0].published_at, row[0].version))
        unique: List[Tuple[LibraryVersion, MetricVector]] = []
        seen_versions = set()
        for version, vector in ordered:
            if version.version in seen_versions:
                continue
            if unique and unique[-1][0].published_at >= version.published_at:
                continue
            seen_versions.add(version.version)
            unique.append((version, vector))
        failures_sorted = sorted(failures, key=lambda failure: failure.version)
        return cls(name=name, rows=unique, failures=list(failures_sorted))

    @property
    def versions(self) -> List[LibraryVersion]:
        return [version for version, _ in self.rows]
