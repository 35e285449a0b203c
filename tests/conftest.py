"""Shared pytest fixtures."""

from __future__ import annotations

import sys

import pytest
from loguru import logger

from lorebase.db.connection import Database
from lorebase.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".lorebase.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI invocations re-point loguru at the runner's stderr; undo that afterwards."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
