"""Command line interface for team-order."""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from team_order import __version__

from .commands import config_cmd, history, order, session, status

console = Console()

app = typer.Typer(
    name="team-order",
    help="Run a shared team food and drink order",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(session.app, name="session")
app.add_typer(order.app, name="order")
app.add_typer(history.app, name="history")
app.add_typer(config_cmd.app, name="config")
app.command(name="status")(status.status)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"team-order {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version"
    ),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


__all__ = ["app"]
