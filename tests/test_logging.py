"""Tests for logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

from modernity.logging import ROOT_LOGGER, configure_logging, get_logger, version_logger


def test_get_logger_nests_under_root() -> None:
    assert get_logger().name == ROOT_LOGGER
    assert get_logger("pipeline").name == "modernity.pipeline"


def test_configure_logging_replaces_handlers(tmp_path: Path) -> None:
    configure_logging()
    logger = configure_logging(verbose=True)

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False


def test_log_file_records_debug_messages_with_version_prefix(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "run.log"
    logger = configure_logging(log_file=log_file)

    version_logger(get_logger("pipeline"), "serde", "1.0.0").debug("parsed %d files", 4)
    for handler in logger.handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "modernity.pipeline: serde 1.0.0: parsed 4 files" in content
    assert logger.handlers[0].level == logging.INFO


def test_version_logger_prefixes_messages(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger=ROOT_LOGGER):
        version_logger(get_logger("pipeline"), "log", "0.4.20").warning("dropped: %s", "bad archive")

    assert caplog.records[-1].getMessage() == "log 0.4.20: dropped: bad archive"
