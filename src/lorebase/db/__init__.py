"""Lorebase document store."""

from lorebase.db.connection import Database
from lorebase.db.migrations import MIGRATIONS, run_migrations
from lorebase.db.repository import Repository
from lorebase.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
