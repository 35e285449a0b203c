"""Lorebase rich error messages: actionable CLI feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from lorebase.cli.errors import err_no_db
    console.print(err_no_db(".lorebase.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from lorebase.rag.llm_client import api_key_env, provider_of


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'gemini'. Set:  export GEMINI_API_KEY=...
    """
    provider = provider_of(model)
    env_var = api_key_env(model) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}' (model '{model}').\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str = ".lorebase.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lorebase init"
    )


def err_config(message: str) -> str:
    """Config file is invalid or contains a forbidden key."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}"
    )


def err_invalid_origin(url: str) -> str:
    return (
        f"[red]Error:[/] Not a GitHub repository URL: '{url}'\n"
        "  Use:  https://github.com/<owner>/<repo>  or  <owner>/<repo>"
    )


def err_source_exists(repo_name: str, branch: str, source_id: str) -> str:
    return (
        f"[yellow]Already registered:[/] {repo_name}@{branch} (id {source_id}).\n"
        f"  Run:  lorebase source index {source_id}  to refresh it."
    )


def err_source_not_found(ref: str) -> str:
    """Source not found in database."""
    return (
        f"[yellow]Source not found:[/] '{ref}' is not registered.\n"
        "  Run:  lorebase source list  to see all sources."
    )


def err_permission_denied(actor: str) -> str:
    return (
        f"[red]Error:[/] User '{actor}' is not an admin.\n"
        "  Ask an admin to add you to access.admins in lorebase.yaml."
    )


def err_lease_held(repo_name: str) -> str:
    return (
        f"[red]Error:[/] {repo_name} is already being indexed by another run.\n"
        "  Wait for it to finish, or retry after the lease expires "
        "(indexing.lease_seconds)."
    )


def err_indexing_failed(repo_name: str, message: str) -> str:
    return (
        f"[red]Error:[/] Indexing {repo_name} failed: {message}\n"
        "  Check the repository URL and branch, or set GITHUB_TOKEN for private "
        "repositories and higher rate limits."
    )


def err_conversation_not_found(conversation_id: str) -> str:
    return (
        f"[yellow]Conversation not found:[/] '{conversation_id}'.\n"
        "  Run:  lorebase chats list  to see your conversations."
    )


def err_invalid_message(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_generation_failed(message: str) -> str:
    """Generation failed; the user's message is kept and flagged."""
    return (
        f"[red]Error:[/] No reply could be generated: {message}\n"
        "  Your message was saved. Check the model and API key, then ask again."
    )


def err_audio_invalid(message: str) -> str:
    """Audio file rejected before transcription."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Tip:  ffmpeg -i input.wav -t 600 -c copy short.wav"
    )
