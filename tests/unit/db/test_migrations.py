"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from lorebase.db.connection import Database
from lorebase.db.migrations import MIGRATIONS, run_migrations
from lorebase.db.schema import CURRENT_VERSION, initialize, schema_version


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert schema_version(conn) == MIGRATIONS[-1][0] == CURRENT_VERSION
    conn.close()


def test_schema_version_zero_before_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute("CREATE TABLE schema_version (version INTEGER NOT NULL, applied_at DATETIME)")
    assert schema_version(conn) == 0
    conn.close()


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    initialize(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

@pytest.mark.parametrize("table", ["sources", "chunks", "conversations", "turns"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


# --- Constraints ---

def test_source_state_check_constraint(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO sources (id, url, owner, repo, branch, state) VALUES (?, ?, ?, ?, ?, ?)",
            ("s1", "https://github.com/a/b", "a", "b", "main", "done"),
        )


def test_source_origin_unique(tmp_db):
    sql = "INSERT INTO sources (id, url, owner, repo, branch) VALUES (?, ?, ?, ?, ?)"
    tmp_db.execute(sql, ("s1", "https://github.com/a/b", "a", "b", "main"))
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(sql, ("s2", "https://github.com/a/b", "a", "b", "main"))


def test_turn_role_check_constraint(tmp_db):
    tmp_db.execute("INSERT INTO conversations (id, owner, title) VALUES ('c1', 'alice', 't')")
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO turns (id, conversation_id, role, text) VALUES ('t1', 'c1', 'model', 'hi')"
        )
