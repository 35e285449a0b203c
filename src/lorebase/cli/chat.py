"""lorebase ask / lorebase chats: grounded conversations with the knowledge base.

Commands:
  lorebase ask TEXT [--conversation ID] [--mode ID] [--voice] [--audio FILE]
  lorebase chats list
  lorebase chats show ID
  lorebase chats delete ID [--yes]
  lorebase chats pin ID [--unpin]
  lorebase chats rename ID TITLE
  lorebase chats purge [--yes]
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from lorebase.cli.common import console, current_actor, load_cli_config, open_db, resolve_db
from lorebase.cli.errors import (
    err_audio_invalid,
    err_conversation_not_found,
    err_generation_failed,
    err_invalid_message,
    err_no_api_key,
)
from lorebase.db.models import Conversation, Role
from lorebase.db.repository import ConversationNotFoundError, Repository
from lorebase.rag import llm_client
from lorebase.rag.assembler import ConversationAssembler, InvalidMessageError
from lorebase.rag.llm_client import GenerationError

chats_app = typer.Typer(
    name="chats",
    help="Manage your conversations (list, show, delete, pin, rename, purge).",
    add_completion=False,
)

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to .lorebase.db (default: LOREBASE_DB or ./.lorebase.db)."),
]


def ask_cmd(
    text: Annotated[
        str | None,
        typer.Argument(help="Your question. Omit when using --audio."),
    ] = None,
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue this conversation (created if missing)."),
    ] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="Guided mode id from lorebase.yaml modes:."),
    ] = None,
    voice: Annotated[
        bool,
        typer.Option("--voice", help="Use the voice channel (short replies, less context)."),
    ] = False,
    audio: Annotated[
        Path | None,
        typer.Option("--audio", help="Transcribe a spoken question from this audio file."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Ask a question and get an answer grounded in the indexed documentation."""
    cfg = load_cli_config()
    channel = "voice" if voice or audio is not None else "text"

    try:
        llm_client.validate_api_key(cfg.generation.model)
    except EnvironmentError:
        console.print(err_no_api_key(cfg.generation.model))
        raise typer.Exit(1)

    if audio is not None:
        try:
            text = llm_client.transcribe(audio)
        except ValueError as exc:
            console.print(err_audio_invalid(str(exc)))
            raise typer.Exit(1)
        except GenerationError as exc:
            console.print(err_generation_failed(str(exc)))
            raise typer.Exit(1)
        console.print(f"[dim]You said:[/] {text}")

    conn = open_db(resolve_db(db, cfg))
    try:
        assembler = ConversationAssembler(Repository(conn), cfg, generate=llm_client.generate)
        try:
            response = assembler.respond(
                conversation,
                text or "",
                owner=current_actor(),
                mode=mode,
                channel=channel,
            )
        except InvalidMessageError as exc:
            console.print(err_invalid_message(str(exc)))
            raise typer.Exit(1)
        except ConversationNotFoundError:
            console.print(err_conversation_not_found(conversation or ""))
            raise typer.Exit(1)
        except GenerationError as exc:
            console.print(err_generation_failed(str(exc)))
            raise typer.Exit(1)
    finally:
        conn.close()

    console.print(
        Panel(
            response.text,
            title=f"[bold]{cfg.chat.assistant_name}[/]",
            subtitle=f"[dim]conversation {response.conversation_id}[/]",
            expand=False,
        )
    )
    if response.citations:
        console.print("[bold]Sources:[/]")
        for c in response.citations:
            console.print(f"  • {c.repo_name}/{c.file_path}  [dim]{c.url}[/]")


# ---------------------------------------------------------------------------
# chats
# ---------------------------------------------------------------------------


def _owned(repo: Repository, conversation_id: str) -> Conversation:
    conversation = repo.get_conversation(conversation_id)
    if conversation is None or conversation.owner != current_actor():
        console.print(err_conversation_not_found(conversation_id))
        raise typer.Exit(1)
    return conversation


@chats_app.command("list")
def chats_list_cmd(db: DbOption = None) -> None:
    """List your conversations (pinned first, then most recent)."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    try:
        conversations = Repository(conn).list_conversations(current_actor())
    finally:
        conn.close()

    if not conversations:
        console.print('[yellow]No conversations yet.[/]\n  Run:  lorebase ask "your question"')
        return

    table = Table(title="Conversations", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Pinned")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    table.add_column("Last reply")
    for c in conversations:
        table.add_row(
            c.id,
            c.title,
            "📌" if c.pinned else "",
            str(c.message_count),
            (c.updated_at or "")[:19].replace("T", " "),
            c.last_message[:60],
        )
    console.print(table)


@chats_app.command("show")
def chats_show_cmd(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    db: DbOption = None,
) -> None:
    """Show every turn of a conversation."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        conversation = _owned(repo, conversation_id)
        turns = repo.list_turns(conversation.id)
    finally:
        conn.close()

    console.print(f"[bold]{conversation.title}[/]  [dim]({conversation.id})[/]\n")
    for turn in turns:
        speaker = "You" if turn.role is Role.USER else cfg.chat.assistant_name
        flag = "  [red](no reply: generation failed)[/]" if turn.is_error else ""
        console.print(f"[bold]{speaker}:[/]{flag} {turn.text}")
        for c in turn.citations:
            console.print(f"    [dim]↳ {c.repo_name}/{c.file_path}[/]")
        console.print()


@chats_app.command("delete")
def chats_delete_cmd(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: DbOption = None,
) -> None:
    """Delete a conversation and all of its messages."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        conversation = _owned(repo, conversation_id)
        if not yes and not typer.confirm(f"Delete '{conversation.title}'?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        repo.delete_conversation(conversation.id)
        console.print(f"[green]✓[/] Deleted conversation {conversation.id}")
    finally:
        conn.close()


@chats_app.command("pin")
def chats_pin_cmd(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    unpin: Annotated[bool, typer.Option("--unpin", help="Remove the pin instead.")] = False,
    db: DbOption = None,
) -> None:
    """Pin a conversation to the top of the list."""
    cfg = load_cli_config()
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        conversation = _owned(repo, conversation_id)
        conversation.pinned = not unpin
        repo.update_conversation(conversation)
        console.print(f"[green]✓[/] {'Unpinned' if unpin else 'Pinned'} '{conversation.title}'")
    finally:
        conn.close()


@chats_app.command("rename")
def chats_rename_cmd(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id.")],
    title: Annotated[str, typer.Argument(help="New title.")],
    db: DbOption = None,
) -> None:
    """Rename a conversation."""
    cfg = load_cli_config()
    title = title.strip()
    if not title:
        console.print(err_invalid_message("Title must not be empty"))
        raise typer.Exit(1)
    conn = open_db(resolve_db(db, cfg))
    try:
        repo = Repository(conn)
        conversation = _owned(repo, conversation_id)
        conversation.title = title
        repo.update_conversation(conversation)
        console.print(f"[green]✓[/] Renamed to '{title}'")
    finally:
        conn.close()


@chats_app.command("purge")
def chats_purge_cmd(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: DbOption = None,
) -> None:
    """Delete ALL of your conversations."""
    cfg = load_cli_config()
    actor = current_actor()
    conn = open_db(resolve_db(db, cfg))
    try:
        if not yes and not typer.confirm(f"Delete every conversation of '{actor}'?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        deleted = Repository(conn).delete_conversations_by_owner(actor)
        console.print(f"[green]✓[/] Deleted {deleted} conversation(s)")
    finally:
        conn.close()
