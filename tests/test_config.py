"""Tests for modernity.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from modernity.config import (
    DEFAULT_MACRO_DEPTH,
    DEFAULT_SAMPLE_SIZE,
    ConfigError,
    ModernityConfig,
    RegistryConfig,
    load_config,
)


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, ModernityConfig)
    assert config.root == tmp_path.resolve()
    assert config.expansions_dir == tmp_path.resolve() / "expansions"
    assert config.results_dir == tmp_path.resolve() / "results"
    assert config.cache_dir == tmp_path.resolve() / ".modernity"
    assert config.workers is None
    assert config.macro_depth == DEFAULT_MACRO_DEPTH
    assert config.sampling.count == DEFAULT_SAMPLE_SIZE
    assert config.sampling.range is None
    assert config.registry == RegistryConfig()


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    config_file = tmp_path / ".modernity.yml"
    config_file.write_text(
        """
expansions_dir: "artifacts/expanded"
results_dir: "/srv/modernity/results"
workers: 3
macro_depth: 16
registry:
  base_url: "http://localhost:8080/api/v1/"
  user_agent: "modernity-tests"
  timeout: 5
  retries: 0
  backoff: 0.5
sampling:
  count: 7
  range: "2019-01-01..2023-12-31"
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.expansions_dir == tmp_path.resolve() / "artifacts" / "expanded"
    assert config.results_dir == Path("/srv/modernity/results")
    assert config.workers == 3
    assert config.effective_workers() == 3
    assert config.macro_depth == 16
    assert config.registry.base_url == "http://localhost:8080/api/v1"
    assert config.registry.user_agent == "modernity-tests"
    assert config.registry.timeout == pytest.approx(5.0)
    assert config.registry.retries == 1
    assert config.registry.backoff == pytest.approx(0.5)
    assert config.sampling.count == 7
    assert config.sampling.range == "2019-01-01..2023-12-31"


def test_load_config_treats_empty_file_as_defaults(tmp_path: Path) -> None:
    (tmp_path / ".modernity.yml").write_text("\n", encoding="utf-8")

    config = load_config(tmp_path)

    assert config.sampling.count == DEFAULT_SAMPLE_SIZE


@pytest.mark.parametrize(
    "content",
    [
        "workers: 0\n",
        "macro_depth: -1\n",
        "sampling:\n  count: 0\n",
        "- just\n- a list\n",
        "registry: [unterminated\n",
    ],
)
def test_load_config_rejects_invalid_settings(tmp_path: Path, content: str) -> None:
    (tmp_path / ".modernity.yml").write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_effective_workers_is_positive_without_setting(tmp_path: Path) -> None:
    config = ModernityConfig.defaults(tmp_path)

    assert 1 <= config.effective_workers() <= 8
