"""Shared pytest configuration and fixtures for the test suite."""

import os
import shutil
import tempfile
import atexit
from pathlib import Path

import pytest

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="lbt-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DATA_DIR / 'default.db'}"
os.environ.pop("TRAKT_ACCESS_TOKEN", None)

from letterboxd_trakt.db import database  # noqa: E402


@pytest.fixture
def db(tmp_path):
    """Initialise a fresh SQLite database for one test."""
    database.init_db(f"sqlite:///{tmp_path / 'test.db'}")
    yield database
    database.close_db()


@atexit.register
def _cleanup_test_data_dir() -> None:
    """Remove the temporary test data directory after the test session."""
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)
