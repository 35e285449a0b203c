"""lorebase init: create the knowledge base and project config.

Creates:
  .lorebase.db     (empty store with schema)
  lorebase.yaml    (project config template, kept if it already exists)
and adds .lorebase.db to an existing .gitignore.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from lorebase.cli.common import console
from lorebase.config import DEFAULT_DB, project_config_template
from lorebase.db.connection import Database
from lorebase.db.schema import initialize

_PROJECT_CONFIG = "lorebase.yaml"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Project name (defaults to the directory name)."),
    ] = None,
) -> None:
    """Create a Lorebase knowledge base in PROJECT_DIR."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    project_name = name or project_dir.name

    db_path = project_dir / DEFAULT_DB
    if db_path.exists():
        console.print(f"  [yellow]⚠[/]  {DEFAULT_DB} already exists (schema brought up to date)")
    _create_database(db_path)
    _create_project_config(project_dir, project_name)
    _update_gitignore(project_dir)

    console.print(f"\n[bold green]✓ Project '{project_name}' initialized.[/]")
    console.print("  Next:  lorebase source add https://github.com/<owner>/<repo>")


def _create_database(db_path: Path) -> None:
    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    console.print(f"  [green]✓[/] {db_path.name}")


def _create_project_config(project_dir: Path, project_name: str) -> None:
    path = project_dir / _PROJECT_CONFIG
    if path.exists():
        console.print(f"  [dim]-[/] {_PROJECT_CONFIG} (kept existing file)")
        return
    path.write_text(project_config_template(project_name), encoding="utf-8")
    console.print(f"  [green]✓[/] {_PROJECT_CONFIG}")


def _update_gitignore(project_dir: Path) -> None:
    """Add Lorebase entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8")
    to_add = [e for e in (DEFAULT_DB, f"{DEFAULT_DB}-wal", f"{DEFAULT_DB}-shm") if e not in existing.splitlines()]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# Lorebase\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with Lorebase entries)")
