"""Shared helpers for lorebase commands."""

from __future__ import annotations

import getpass
import os
import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from lorebase.cli.errors import err_config, err_no_db
from lorebase.config import ConfigError, LorebaseConfig, load_config
from lorebase.db.connection import Database
from lorebase.db.models import Source
from lorebase.db.repository import Repository
from lorebase.db.schema import initialize
from lorebase.ingest.fetcher import InvalidOriginError, parse_origin

console = Console()


def load_cli_config() -> LorebaseConfig:
    """Load config, exiting with an actionable message when it is invalid."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db(db: Path | None, cfg: LorebaseConfig) -> Path:
    """Return the database path: --db flag, else LOREBASE_DB / default."""
    return db if db is not None else Path(cfg.db_path)


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open an existing database (schema migrated) or exit with an error."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def current_actor() -> str:
    """Name of the local user (LOREBASE_USER overrides the login name)."""
    return os.environ.get("LOREBASE_USER") or getpass.getuser()


def find_source(repo: Repository, ref: str, default_branch: str = "main") -> Source | None:
    """Look a source up by id, or by its URL / owner/repo shorthand."""
    source = repo.get_source(ref)
    if source is not None:
        return source
    try:
        origin = parse_origin(ref, default_branch=default_branch)
    except InvalidOriginError:
        return None
    return repo.get_source_by_origin(origin.owner, origin.repo, origin.branch)
