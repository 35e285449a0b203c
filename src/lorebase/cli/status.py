"""lorebase status: project, knowledge base and conversation overview."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel

from lorebase.cli.common import console, load_cli_config, open_db, resolve_db
from lorebase.config import LorebaseConfig
from lorebase.db.models import SourceState
from lorebase.db.repository import Repository
from lorebase.db.schema import schema_version


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lorebase.db (default: LOREBASE_DB or ./.lorebase.db)."),
    ] = None,
) -> None:
    """Show knowledge base and conversation statistics."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)

    _show_project_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  lorebase init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db_path)
    try:
        repo = Repository(conn)
        stats = repo.stats()
        sources = repo.list_sources()
        version = schema_version(conn)
    finally:
        conn.close()

    _show_knowledge_panel(stats, sources, version)
    _show_conversation_panel(stats)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db_path: Path, cfg: LorebaseConfig) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"

    lines = [
        f"Project:   [bold]{cfg.project.name or '(no config)'}[/]",
        f"Database:  {db_info}",
        f"Model:     {cfg.generation.model}",
    ]
    active_modes = [m for m, mode in cfg.modes.items() if mode.active]
    if active_modes:
        lines.append(f"Modes:     {', '.join(active_modes)}")
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_knowledge_panel(stats: dict, sources: list, version: int) -> None:
    by_state: dict[str, int] = stats["sources_by_state"]
    lines = [
        f"Sources: [bold]{stats['sources']}[/]  |  Chunks: [bold]{stats['chunks']:,}[/]  |  Schema: v{version}",
        "  "
        + "  ".join(
            f"{state.value}: {by_state.get(state.value, 0)}" for state in SourceState
        ),
    ]
    synced = sorted((s.status.last_sync for s in sources if s.status.last_sync), reverse=True)
    if synced:
        lines.append(f"Last sync: {synced[0][:19].replace('T', ' ')} UTC")
    failed = [s for s in sources if s.status.state is SourceState.ERROR]
    for s in failed:
        lines.append(f"  [red]✗[/] {s.repo_name}: {s.status.error}")
    if not stats["sources"]:
        lines.append("\n  [dim]Add one:  lorebase source add https://github.com/<owner>/<repo>[/]")
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_conversation_panel(stats: dict) -> None:
    console.print(
        Panel(
            f"Conversations: [bold]{stats['conversations']}[/]  |  Messages: [bold]{stats['turns']}[/]",
            title="[bold]Conversations[/]",
            expand=False,
        )
    )
