from __future__ import annotations

import logging
from pathlib import Path

import pytest

from modernity.logging import ROOT_LOGGER
from modernity.stdlib.index import StdIndex
from tests._fixtures.crate_builder import CrateBuilder


@pytest.fixture
def crate_builder(tmp_path: Path) -> CrateBuilder:
    """Provide a reusable crate builder rooted at the pytest tmp_path."""
    return CrateBuilder(tmp_path)


@pytest.fixture
def expansions_dir(crate_builder: CrateBuilder) -> Path:
    """Write the minimal std, core and alloc expansion artifacts."""
    return crate_builder.write_expansions()


@pytest.fixture
def std_index(expansions_dir: Path) -> StdIndex:
    return StdIndex.load(expansions_dir)


@pytest.fixture(autouse=True)
def _restore_modernity_logger():
    """Undo handlers installed by configure_logging so caplog keeps working."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
