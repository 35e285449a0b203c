"""lorebase source: register, list, index and remove GitHub sources.

Commands:
  lorebase source add URL [--branch]     register a repository (admin)
  lorebase source list                   table of sources and their status
  lorebase source index ID|URL           re-index with a progress bar (admin)
  lorebase source remove ID|URL [--yes]  delete a source and its chunks (admin)
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from lorebase.cli.common import console, current_actor, find_source, load_cli_config, open_db, resolve_db
from lorebase.cli.errors import (
    err_indexing_failed,
    err_invalid_origin,
    err_lease_held,
    err_permission_denied,
    err_source_exists,
    err_source_not_found,
)
from lorebase.config import LorebaseConfig
from lorebase.db.models import Source, SourceState
from lorebase.db.repository import Repository
from lorebase.ingest.fetcher import GitHubFetcher, InvalidOriginError, parse_origin
from lorebase.ingest.orchestrator import (
    IndexingError,
    IndexingOrchestrator,
    IndexRun,
    LeaseHeldError,
    PermissionDeniedError,
)

source_app = typer.Typer(
    name="source",
    help="Manage indexed GitHub repositories (add, list, index, remove).",
    add_completion=False,
)

_STATE_STYLE = {
    SourceState.PENDING: "[dim]pending[/]",
    SourceState.INDEXING: "[cyan]indexing[/]",
    SourceState.READY: "[green]ready[/]",
    SourceState.ERROR: "[red]error[/]",
}

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to .lorebase.db (default: LOREBASE_DB or ./.lorebase.db)."),
]


def _require_admin(cfg: LorebaseConfig) -> str:
    actor = current_actor()
    if not cfg.access.is_admin(actor):
        console.print(err_permission_denied(actor))
        raise typer.Exit(1)
    return actor


def _require_source(repo: Repository, ref: str, cfg: LorebaseConfig) -> Source:
    source = find_source(repo, ref, cfg.indexing.default_branch)
    if source is None:
        console.print(err_source_not_found(ref))
        raise typer.Exit(1)
    return source


@source_app.command("add")
def source_add_cmd(
    url: Annotated[str, typer.Argument(help="GitHub URL or owner/repo.")],
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch to index (default: indexing.default_branch)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Register a GitHub repository as a source (state: pending)."""
    cfg = load_cli_config()
    _require_admin(cfg)
    try:
        origin = parse_origin(url, branch, default_branch=cfg.indexing.default_branch)
    except InvalidOriginError:
        console.print(err_invalid_origin(url))
        raise typer.Exit(1)

    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        existing = repo.get_source_by_origin(origin.owner, origin.repo, origin.branch)
        if existing is not None:
            console.print(err_source_exists(existing.repo_name, existing.branch, existing.id))
            raise typer.Exit(1)

        source = repo.add_source(
            Source(
                id=uuid.uuid4().hex[:12],
                url=origin.url,
                owner=origin.owner,
                repo=origin.repo,
                branch=origin.branch,
            )
        )
        console.print(f"[green]✓[/] Registered {source.repo_name}@{source.branch}  (id {source.id})")
        console.print(f"  Next:  lorebase source index {source.id}")
    finally:
        conn.close()


@source_app.command("list")
def source_list_cmd(db: DbOption = None) -> None:
    """List registered sources with their indexing status."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    try:
        sources = Repository(conn).list_sources()
    finally:
        conn.close()

    if not sources:
        console.print("[yellow]No sources registered.[/]\n  Run:  lorebase source add <url>")
        return

    table = Table(title="Sources", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Repository", style="bold")
    table.add_column("Branch")
    table.add_column("State")
    table.add_column("Progress", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Last sync")

    for s in sources:
        state = _STATE_STYLE[s.status.state]
        if s.status.error:
            state += f"\n[red]{s.status.error}[/]"
        table.add_row(
            s.id,
            s.repo_name,
            s.branch,
            state,
            f"{s.status.progress}%",
            str(s.status.file_count),
            str(s.status.chunk_count),
            (s.status.last_sync or "")[:19].replace("T", " "),
        )
    console.print(table)


@source_app.command("index")
def source_index_cmd(
    ref: Annotated[str, typer.Argument(help="Source id, GitHub URL, or owner/repo.")],
    db: DbOption = None,
) -> None:
    """Re-index a source from scratch (fetch, chunk, store)."""
    cfg = load_cli_config()
    actor = current_actor()
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        source = _require_source(repo, ref, cfg)
        orchestrator = IndexingOrchestrator(
            repo,
            GitHubFetcher(token=os.environ.get("GITHUB_TOKEN")),
            cfg.indexing,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Indexing {source.repo_name}", total=100)

            def _on_progress(run: IndexRun) -> None:
                label = f"Indexing {source.repo_name}"
                if run.total_files:
                    label += f" ({run.processed_files}/{run.total_files} files)"
                progress.update(task, completed=run.progress, description=label)

            try:
                result = orchestrator.trigger(
                    source.id,
                    actor=actor,
                    is_admin=cfg.access.is_admin,
                    on_progress=_on_progress,
                )
            except PermissionDeniedError:
                console.print(err_permission_denied(actor))
                raise typer.Exit(1)
            except LeaseHeldError:
                console.print(err_lease_held(source.repo_name))
                raise typer.Exit(1)
            except IndexingError as exc:
                console.print(err_indexing_failed(source.repo_name, str(exc)))
                raise typer.Exit(1)

        console.print(
            f"[green]✓[/] Indexed {source.repo_name}: "
            f"{result.file_count} files, {result.chunk_count} chunks"
        )
        if result.skipped_files:
            console.print(f"  [yellow]{len(result.skipped_files)} file(s) skipped[/] (run with --verbose for details)")
    finally:
        conn.close()


@source_app.command("remove")
def source_remove_cmd(
    ref: Annotated[str, typer.Argument(help="Source id, GitHub URL, or owner/repo.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: DbOption = None,
) -> None:
    """Remove a source and all of its chunks."""
    cfg = load_cli_config()
    _require_admin(cfg)
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        source = _require_source(repo, ref, cfg)
        chunk_count = repo.count_chunks(source.id)

        console.print(f"\nRemove source: [bold]{source.repo_name}@{source.branch}[/]")
        console.print(f"  Chunks: {chunk_count}")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        deleted = repo.delete_source(source.id, batch_size=cfg.indexing.write_batch_size)
        console.print(f"\n[green]✓[/] Removed: {source.repo_name}  ({deleted} chunks deleted)")
    finally:
        conn.close()
