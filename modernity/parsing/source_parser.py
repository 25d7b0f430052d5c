"""Parses a fetched crate version into a SyntaxForest."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, List, Optional, Set, Tuple

from ..config import DEFAULT_MACRO_DEPTH
from ..errors import ParseFailure, VersionParseFailure
from ..logging import get_logger
from ..models import FileOutcome, LibraryVersion, ParsedFile, SkippedFile, SyntaxForest
from ..stdlib.index import StdIndex
from ..syntax.rust import RustParser, first_error
from .macro_table import MacroTable
from .modules import crate_root, declared_modules, module_directory, read_manifest

logger = get_logger("parsing")


@dataclass(frozen=True)
class _PendingModule:
    path: Path
    is_root: bool


class SourceParser:
    """Discovers the files reachable through a crate's module graph and parses them."""

    def __init__(
        self,
        index: StdIndex,
        *,
        macro_depth: int = DEFAULT_MACRO_DEPTH,
        parser: RustParser | None = None,
    ) -> None:
        self._index = index
        self._macro_depth = macro_depth
        self._parser = parser or RustParser()

    def parse(self, version: LibraryVersion) -> SyntaxForest:
        if version.source_root is None:
            raise VersionParseFailure(version.version, "version has no extracted source")
        source_root = version.source_root
        manifest = read_manifest(source_root)
        root_file = crate_root(source_root, manifest)
        if root_file is None:
            raise VersionParseFailure(version.version, "no crate root (src/lib.rs or src/main.rs) found")

        files = self._parse_module_graph(source_root, root_file)
        parsed = [outcome for outcome in files if isinstance(outcome, ParsedFile)]
        if not parsed:
            raise VersionParseFailure(
                version.version, f"none of the {len(files)} reachable source files could be parsed"
            )

        table = MacroTable(self._index, self._parser, max_depth=self._macro_depth)
        macros = table.build(parsed)
        logger.debug(
            "%s %s: %d files parsed, %d skipped, %d macro invocations",
            version.name,
            version.version,
            len(parsed),
            len(files) - len(parsed),
            len(macros),
        )
        return SyntaxForest(version=version, files=files, manifest=manifest, macros=macros)

    def _parse_module_graph(self, source_root: Path, root_file: Path) -> List[FileOutcome]:
        outcomes: List[FileOutcome] = []
        queue: Deque[_PendingModule] = deque([_PendingModule(root_file, is_root=True)])
        seen: Set[Path] = set()
        while queue:
            pending = queue.popleft()
            resolved = pending.path.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            relative = _relative(source_root, pending.path)
            if not resolved.is_relative_to(source_root.resolve()):
                outcomes.append(SkippedFile(path=relative, reason="module path leaves the crate source"))
                continue
            try:
                source = pending.path.read_bytes()
            except OSError as exc:
                logger.debug("Skipping unreadable module file %s: %s", relative, exc)
                outcomes.append(SkippedFile(path=relative, reason=f"unreadable: {exc.strerror or exc}"))
                continue

            tree = self._parser.parse(source)
            position = first_error(tree.root_node)
            if position is not None:
                failure = ParseFailure(relative, position)
                logger.debug("Skipping %s", failure)
                outcomes.append(SkippedFile(path=relative, reason=failure.reason, position=position))
            else:
                outcomes.append(ParsedFile(path=relative, tree=tree, source=source))

            # Declarations are still followed from files with syntax errors.
            directory = module_directory(pending.path, is_root=pending.is_root)
            for declaration in declared_modules(tree.root_node, pending.path, directory):
                target = _first_existing(declaration.candidates)
                if target is None:
                    missing = _relative(source_root, declaration.candidates[0])
                    logger.debug("Module %s declared but not found at %s", declaration.name, missing)
                    outcomes.append(SkippedFile(path=missing, reason="module file not found"))
                    continue
                queue.append(_PendingModule(target, is_root=declaration.explicit_path))
        return outcomes


def _first_existing(candidates: Tuple[Path, ...]) -> Optional[Path]:
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _relative(source_root: Path, path: Path) -> str:
    try:
        return path.relative_to(source_root).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = ["SourceParser"]
