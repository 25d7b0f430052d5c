"""End-to-end measurement run for a single crate."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import ConfigError, ModernityConfig
from .errors import NoVersionsAnalyzed, VersionError
from .fetcher import SourceFetcher
from .logging import get_logger, version_logger
from .metrics import MetricEngine
from .models import LibraryReport, LibraryVersion, MetricVector, Release, VersionFailure
from .parsing import SourceParser
from .registry import CratesIoRegistry, Registry
from .selection import TimeRange, VersionSelector, parse_time_range
from .stdlib.index import StdIndex
from .stores import IndexCache
from .table import write_report

INDEX_CACHE_FILENAME = "std-index.json"

Row = Tuple[LibraryVersion, MetricVector]


@dataclass
class RunOutcome:
    """Result of measuring one crate."""

    report: LibraryReport
    table: Path
    selected: int


class Pipeline:
    """Selects versions, analyzes them in parallel and writes the crate's table."""

    def __init__(
        self,
        config: ModernityConfig,
        *,
        registry: Registry | None = None,
        fetcher: SourceFetcher | None = None,
        index: StdIndex | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or CratesIoRegistry(config.registry)
        self.fetcher = fetcher or SourceFetcher(config.registry)
        self.logger = get_logger("pipeline")
        self._index = index

    def load_index(self) -> StdIndex:
        if self._index is None:
            cache = IndexCache(self.config.cache_dir / INDEX_CACHE_FILENAME)
            self.logger.info("Loading standard-library index from %s", self.config.expansions_dir)
            self._index = StdIndex.load(self.config.expansions_dir, cache=cache)
        return self._index

    def run(
        self,
        name: str,
        *,
        count: Optional[int] = None,
        time_range: Optional[TimeRange] = None,
    ) -> RunOutcome:
        """Measure ``name`` and write ``<results_dir>/<name>.csv``."""
        index = self.load_index()
        sample_size = count if count is not None else self.config.sampling.count
        if time_range is None and self.config.sampling.range:
            try:
                time_range = parse_time_range(self.config.sampling.range)
            except ValueError as exc:
                raise ConfigError(f"sampling.range: {exc}") from exc

        releases = VersionSelector(self.registry).select(name, sample_size, time_range)
        self.logger.info("Selected %d versions of %s", len(releases), name)

        engine = MetricEngine(index)
        rows, failures = self._analyze(name, releases, index, engine)
        if not rows:
            raise NoVersionsAnalyzed(name, len(failures))

        report = LibraryReport.assemble(name, rows, failures)
        table = write_report(report, self.config.results_dir, engine.names)
        self.logger.info(
            "Wrote %d rows for %s to %s (%d versions dropped)",
            len(report.rows),
            name,
            table,
            len(report.failures),
        )
        return RunOutcome(report=report, table=table, selected=len(releases))

    def _analyze(
        self,
        name: str,
        releases: List[Release],
        index: StdIndex,
        engine: MetricEngine,
    ) -> Tuple[List[Row], List[VersionFailure]]:
        rows: List[Row] = []
        failures: List[VersionFailure] = []
        workers = self.config.effective_workers()
        self.logger.debug("Analyzing with %d worker threads", workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="modernity")
        try:
            futures: Dict[Future[Row], Release] = {
                executor.submit(self._analyze_version, name, release, index, engine): release
                for release in releases
            }
            for future in as_completed(futures):
                release = futures[future]
                log = version_logger(self.logger, name, release.version)
                try:
                    rows.append(future.result())
                except VersionError as exc:
                    log.warning("dropped (%s): %s", type(exc).__name__, exc.reason)
                    failures.append(VersionFailure(release.version, type(exc).__name__, exc.reason))
                except Exception as exc:
                    log.exception("unexpected error during analysis")
                    failures.append(VersionFailure(release.version, type(exc).__name__, str(exc)))
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            self.fetcher.cleanup()
            raise
        executor.shutdown(wait=True)
        return rows, failures

    def _analyze_version(self, name: str, release: Release, index: StdIndex, engine: MetricEngine) -> Row:
        version = self.fetcher.fetch(name, release)
        try:
            forest = SourceParser(index, macro_depth=self.config.macro_depth).parse(version)
            vector = engine.compute(forest)
        finally:
            self.fetcher.release(name, release.version)
        version_logger(self.logger, name, release.version).debug(
            "%d files parsed, %d skipped", len(forest.parsed_files), len(forest.skipped_files)
        )
        return LibraryVersion(name=name, version=version.version, published_at=version.published_at), vector


__all__ = ["Pipeline", "RunOutcome"]
