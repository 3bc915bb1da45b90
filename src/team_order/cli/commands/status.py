"""Status command - connection state, pending writes and current session."""

from __future__ import annotations

import typer
from rich.table import Table

from team_order.session.errors import NoActiveSessionError
from team_order.session.models import HISTORY_INDEX_KEY
from team_order.sync.config import SyncConfig
from team_order.sync.connection import ConnectionState
from team_order.sync.primitives import SyncFailure

from ..context import console, load_identity, open_controller, run

_LABEL_COLORS = {
    "Connected": "green",
    "Reconnecting": "yellow",
    "Connecting": "yellow",
    "Offline": "red",
}


def _connection_row(state: ConnectionState) -> str:
    color = _LABEL_COLORS.get(state.label, "white")
    text = f"[{color}]{state.label}[/{color}]"
    if state.last_error:
        text += f" [dim]({state.last_error})[/dim]"
    return text


def status(
    check_connection: bool = typer.Option(
        False,
        "--check",
        "-c",
        help="Contact the store server (may be slow if it is unreachable)",
    ),
) -> None:
    """Show server, connection state, queued offline writes and the current session.

    Examples:
        team-order status
        team-order status --check
    """
    config = SyncConfig()

    async def _check_connection():
        async with open_controller(config) as controller:
            if check_connection:
                try:
                    await controller.sync.read(HISTORY_INDEX_KEY)
                    replayed = await controller.sync.replay_pending()
                except SyncFailure:
                    # the monitor already holds the failure
                    replayed = 0
            else:
                replayed = 0
            queue_size = controller.sync.queue.size() if controller.sync.queue else 0
            return controller.sync.monitor.state, queue_size, replayed

    state, queue_size, replayed = run(_check_connection())

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Server URL", config.get_server_url())
    table.add_row("Config File", str(config.config_file))
    if check_connection:
        table.add_row("Connection", _connection_row(state))
        if replayed:
            table.add_row("Replayed", f"[green]{replayed} queued write(s)[/green]")
    queue_color = "green" if queue_size == 0 else "yellow"
    table.add_row("Pending", f"[{queue_color}]{queue_size} write(s)[/{queue_color}]")

    try:
        identity = load_identity(config)
        table.add_row("Session", f"{identity.session_id} as {identity.display_name} ({identity.role})")
    except NoActiveSessionError:
        table.add_row("Session", "[dim]None[/dim]")

    console.print(table)
    if not check_connection:
        console.print("[dim]Use 'team-order status --check' to test connectivity.[/dim]")
