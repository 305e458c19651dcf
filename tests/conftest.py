"""Shared fixtures: a file-backed SQLite store per test and a fake clock."""

import logging

import pytest

from coralqueue.logging.config import ContextualFilter
from coralqueue.logging.context import clear_log_context
from coralqueue.persistence import close_database, init_database
from coralqueue.queue.store import SqlJobStore
from tests.helpers.clock import FakeClock


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Drop handlers installed by configure_logging() so later tests keep clean output."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if any(isinstance(f, ContextualFilter) for f in handler.filters):
            root.removeHandler(handler)
    root.setLevel(level)
    logging.getLogger("apscheduler").setLevel(logging.NOTSET)


@pytest.fixture
def database(tmp_path):
    """Initialise a fresh SQLite database file for the test."""
    db_url = f"sqlite:///{tmp_path / 'queue.db'}"
    init_database(db_url)
    yield db_url
    close_database()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(database, clock):
    return SqlJobStore(clock=clock)
