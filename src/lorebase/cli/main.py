"""Lorebase CLI entry point."""

from __future__ import annotations

import importlib.metadata
import sys
from typing import Annotated

import typer
from loguru import logger

from lorebase.cli.chat import ask_cmd, chats_app
from lorebase.cli.init import init_cmd
from lorebase.cli.source import source_app
from lorebase.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lorebase")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lorebase {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<dim>{time:HH:mm:ss}</dim> <level>{level: <7}</level> {message}",
    )


app = typer.Typer(
    name="lorebase",
    help=(
        "Lorebase: chat with your GitHub documentation.\n\n"
        "  lorebase source add / index  Build the knowledge base from repositories.\n"
        "  lorebase ask                 Ask grounded questions, with citations."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging on stderr."),
    ] = False,
) -> None:
    """Lorebase: chat with your GitHub documentation."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("ask")(ask_cmd)
app.command("status")(status_cmd)
app.add_typer(source_app, name="source")
app.add_typer(chats_app, name="chats")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Lorebase version."""
    typer.echo(f"lorebase {_installed_version()}")


if __name__ == "__main__":
    app()
