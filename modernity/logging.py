"""Logging setup shared by the CLI and the measurement pipeline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, MutableMapping, Tuple

ROOT_LOGGER = "modernity"

_CONSOLE_FORMAT = "[modernity] %(levelname)s %(message)s"
# Worker threads interleave, so verbose and file output name the thread.
_VERBOSE_FORMAT = "[modernity] %(levelname)s %(threadName)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a component logger under the modernity hierarchy."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


class VersionLogger(logging.LoggerAdapter):
    """Prefixes every message with the crate and version it concerns."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"{extra.get('crate')} {extra.get('version')}: {msg}", kwargs


def version_logger(logger: logging.Logger, crate: str, version: str) -> VersionLogger:
    return VersionLogger(logger, {"crate": crate, "version": version})


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    """Install console output and an optional file sink on the modernity logger.

    The file sink always records debug messages so a failed run can be
    diagnosed without repeating it in verbose mode.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(ROOT_LOGGER)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(_VERBOSE_FORMAT if verbose else _CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if verbose or log_file is not None else logging.INFO)
    return logger


__all__ = ["ROOT_LOGGER", "VersionLogger", "configure_logging", "get_logger", "version_logger"]
