"""Test session fixtures.

Ensures database writes during tests go to an isolated file instead of the
default `market.db`.
"""

import atexit
import logging
import os
import tempfile
from unittest.mock import MagicMock

import pytest

# Flag that we are under pytest so logger_config can direct logs to test files
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("MAX_ORDERS_PER_BATCH", "500")

from bot_logic.database import MarketDatabase

_cleanup_target = None


def _ensure_test_db_path():
    global _cleanup_target

    if os.environ.get("BOT_DB_PATH"):
        return os.environ["BOT_DB_PATH"]

    fd, path = tempfile.mkstemp(prefix="bot-logic-test-", suffix=".db")
    os.close(fd)
    os.environ["BOT_DB_PATH"] = path
    _cleanup_target = path
    return path


TEST_DB_PATH = _ensure_test_db_path()


@atexit.register
def _remove_temp_db():
    if _cleanup_target and os.path.exists(_cleanup_target):
        try:
            os.remove(_cleanup_target)
        except OSError:
            pass


@pytest.fixture
def test_db_path(tmp_path, monkeypatch):
    """Provide an isolated DB path and set BOT_DB_PATH for the test."""
    path = tmp_path / "bot-logic-test.db"
    monkeypatch.setenv("BOT_DB_PATH", str(path))
    return path


@pytest.fixture
def db(test_db_path):
    database = MarketDatabase(str(test_db_path))
    yield database
    database.close()


@pytest.fixture
def fake_logger():
    """Shared lightweight logger mock for tests."""
    logger = MagicMock(spec=logging.Logger)
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.debug = MagicMock()
    logger.exception = MagicMock()
    return logger
