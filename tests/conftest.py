from __future__ import annotations

import pytest

from cargo_fund.logging import get_logger
from tests._fixtures.fakes import FakeGithub


@pytest.fixture
def github() -> FakeGithub:
    """Provide an empty fake Github client; tests fill in ``files``."""
    return FakeGithub()


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo configure_logging() so caplog sees records and no handler outlives capsys."""
    logger = get_logger()
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel("NOTSET")
