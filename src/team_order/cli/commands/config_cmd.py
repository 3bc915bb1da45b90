"""Config commands - show settings and point at a store server."""

from __future__ import annotations

from urllib.parse import urlparse

import typer
from rich.table import Table

from team_order.sync.config import SyncConfig

from ..context import console, describe

app = typer.Typer(
    help="Show and change team-order settings",
    no_args_is_help=True,
)


@app.command()
def show() -> None:
    """Display the resolved configuration."""
    config = SyncConfig()
    table = Table(title="Configuration", show_lines=False)
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for section, values in config.as_dict().items():
        for key, value in values.items():
            table.add_row(section, key, describe(value))
    console.print(table)
    console.print(f"[dim]Config File: {config.config_file}[/dim]")


@app.command(name="set-server")
def set_server(url: str = typer.Argument(..., help="Store server URL (http:// or https://)")) -> None:
    """Set the document store server URL.

    Examples:
        team-order config set-server https://orders.example.com
    """
    normalized_url = url.strip().rstrip("/")
    parsed = urlparse(normalized_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        console.print(
            "[red]Error:[/red] Invalid server URL. Use a full URL, "
            "for example: https://orders.example.com"
        )
        raise typer.Exit(1)

    config = SyncConfig()
    config.set_server_url(normalized_url)
    console.print(f"[green]✓[/green] Store server set to [cyan]{normalized_url}[/cyan]")
