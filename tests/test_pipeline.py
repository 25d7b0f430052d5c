"""End-to-end tests for measuring a crate."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from modernity.config import ConfigError, ModernityConfig
from modernity.errors import LibraryNotFound, NoVersionsAnalyzed
from modernity.fetcher import SourceFetcher
from modernity.metrics import metric_names
from modernity.pipeline import INDEX_CACHE_FILENAME, Pipeline
from modernity.selection import parse_time_range
from tests._fixtures.crate_builder import CrateBuilder, FakeRegistry, simple_crate, utc

BODIES = [
    "pub fn one() -> u32 { 1 }",
    "use std::collections::HashMap;\npub fn map() -> HashMap<u8, u8> { HashMap::new() }",
    "pub fn items() -> Vec<u8> { vec![1, 2, 3] }",
    "pub fn maybe(value: Option<u8>) -> bool { value.is_some() }",
    "pub fn swap(a: &mut u8, b: &mut u8) { std::mem::swap(a, b) }",
]


def _config(crate_builder: CrateBuilder, tmp_path: Path, workers: int = 2) -> ModernityConfig:
    config = ModernityConfig.defaults(tmp_path / "project")
    config.expansions_dir = crate_builder.write_expansions()
    config.workers = workers
    return config


def _releases(crate_builder: CrateBuilder, count: int, corrupt=()):
    releases = []
    for index in range(count):
        version = f"0.{index + 1}.0"
        if version in corrupt:
            archive = crate_builder.corrupt_archive("demo", version)
        else:
            archive = crate_builder.archive("demo", version, simple_crate("demo", version, body=BODIES[index]))
        releases.append(crate_builder.release(version, utc(2018 + index), archive))
    return releases


def _pipeline(config: ModernityConfig, releases, tmp_path: Path, fetcher: SourceFetcher | None = None) -> Pipeline:
    return Pipeline(
        config,
        registry=FakeRegistry({"demo": releases}),
        fetcher=fetcher or SourceFetcher(scratch_root=tmp_path / "scratch"),
    )


def _read_csv(path: Path):
    with path.open(newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))


def test_run_writes_one_row_per_version(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)

    outcome = _pipeline(config, _releases(crate_builder, 3), tmp_path).run("demo", count=3)

    assert outcome.table == config.results_dir / "demo.csv"
    assert outcome.selected == 3
    rows = _read_csv(outcome.table)
    assert rows[0] == ["version", "timestamp"] + metric_names()
    assert [row[0] for row in rows[1:]] == ["0.1.0", "0.2.0", "0.3.0"]
    assert all(len(row) == len(rows[0]) for row in rows)
    assert (config.cache_dir / INDEX_CACHE_FILENAME).exists()
    assert list((tmp_path / "scratch").iterdir()) == []


def test_run_drops_versions_that_fail(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)

    outcome = _pipeline(config, _releases(crate_builder, 5, corrupt={"0.3.0"}), tmp_path).run("demo", count=5)

    assert [version.version for version in outcome.report.versions] == ["0.1.0", "0.2.0", "0.4.0", "0.5.0"]
    assert [(failure.version, failure.category) for failure in outcome.report.failures] == [("0.3.0", "FetchFailure")]
    assert len(_read_csv(outcome.table)) == 5


def test_run_samples_and_filters_by_range(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path, workers=1)
    pipeline = _pipeline(config, _releases(crate_builder, 5), tmp_path)

    outcome = pipeline.run("demo", count=2, time_range=parse_time_range("2019-01-01..2021-12-31"))

    assert [version.version for version in outcome.report.versions] == ["0.2.0", "0.4.0"]


def test_run_keeps_versions_with_long_macro_invocations(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)
    table = ", ".join(str(value) for value in range(1500))
    body = "pub fn table() -> usize { vec![" + table + "].len() }"
    releases = [
        crate_builder.release("0.1.0", utc(2020), crate_builder.archive("demo", "0.1.0", simple_crate("demo", "0.1.0"))),
        crate_builder.release(
            "0.2.0", utc(2021), crate_builder.archive("demo", "0.2.0", simple_crate("demo", "0.2.0", body=body))
        ),
    ]

    outcome = _pipeline(config, releases, tmp_path).run("demo", count=2)

    assert [version.version for version in outcome.report.versions] == ["0.1.0", "0.2.0"]
    assert outcome.report.failures == []


def test_run_fails_when_no_version_can_be_analyzed(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)
    releases = _releases(crate_builder, 2, corrupt={"0.1.0", "0.2.0"})

    with pytest.raises(NoVersionsAnalyzed) as excinfo:
        _pipeline(config, releases, tmp_path).run("demo")

    assert excinfo.value.failures == 2
    assert not (config.results_dir / "demo.csv").exists()


def test_run_propagates_unknown_crates(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)

    with pytest.raises(LibraryNotFound):
        _pipeline(config, _releases(crate_builder, 1), tmp_path).run("missing")


def test_run_rejects_invalid_configured_range(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path)
    config.sampling.range = "sometime"

    with pytest.raises(ConfigError):
        _pipeline(config, _releases(crate_builder, 1), tmp_path).run("demo")


class _InterruptingFetcher(SourceFetcher):
    def fetch(self, name, release):
        version = super().fetch(name, release)
        if release.version == "0.2.0":
            raise KeyboardInterrupt
        return version


def test_interrupt_writes_nothing_and_cleans_scratch(crate_builder: CrateBuilder, tmp_path: Path) -> None:
    config = _config(crate_builder, tmp_path, workers=1)
    fetcher = _InterruptingFetcher(scratch_root=tmp_path / "scratch")

    with pytest.raises(KeyboardInterrupt):
        _pipeline(config, _releases(crate_builder, 3), tmp_path, fetcher=fetcher).run("demo")

    assert fetcher.outstanding == []
    assert list((tmp_path / "scratch").iterdir()) == []
    assert not (config.results_dir / "demo.csv").exists()
