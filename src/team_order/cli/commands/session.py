"""Session commands - create, join and drive a shared order."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from team_order.roster import load_roster
from team_order.session.aggregation import session_totals
from team_order.session.models import Role, SessionDocument
from team_order.sync.config import SyncConfig

from ..context import (
    console,
    describe,
    forget_identity,
    load_identity,
    open_controller,
    report_outcome,
    run,
    save_identity,
)

app = typer.Typer(
    help="Create, join and manage ordering sessions",
    no_args_is_help=True,
)


@app.command()
def create(
    admin_name: str = typer.Argument(..., help="Your display name (you become the admin)"),
    member: Optional[list[str]] = typer.Option(
        None, "--member", "-m", help="Participant name (repeatable); defaults to the team roster"
    ),
    roster: Optional[Path] = typer.Option(None, "--roster", help="Roster file (JSON, YAML or text)"),
    session_id: Optional[str] = typer.Option(None, "--session-id", help="Use a fixed session id"),
) -> None:
    """Start a new ordering session.

    Examples:
        team-order session create Alice --member Bob --member Carol
        team-order session create Alice --roster team.json
    """
    config = SyncConfig()
    configured = config.get("session", "roster_path")
    members = list(member) if member else load_roster(
        [roster, Path(configured).expanduser() if configured else None]
    )

    async def _create():
        async with open_controller(config) as controller:
            participant = await controller.create_session(admin_name, members, session_id=session_id)
            return participant, controller.sync_error

    participant, sync_error = run(_create())
    save_identity(config, participant)
    console.print(f"[green]✓[/green] Session [cyan]{participant.session_id}[/cyan] created")
    console.print(f"[dim]Share the id so others can run 'team-order session join {participant.session_id} <name>'[/dim]")
    if sync_error is not None:
        console.print(f"[yellow]⚠ Not yet synced:[/yellow] {sync_error.message}")
        raise typer.Exit(2)


@app.command()
def join(
    session_id: str = typer.Argument(..., help="Session id shared by the admin"),
    name: str = typer.Argument(..., help="Your display name"),
    admin: bool = typer.Option(False, "--admin", help="Rejoin as the session admin"),
) -> None:
    """Join an existing session."""
    config = SyncConfig()

    async def _join():
        async with open_controller(config) as controller:
            return await controller.join_session(
                session_id, name, Role.ADMIN if admin else Role.MEMBER
            )

    participant = run(_join())
    save_identity(config, participant)
    console.print(
        f"[green]✓[/green] Joined [cyan]{session_id}[/cyan] as {participant.display_name} "
        f"({participant.role})"
    )


def render_document(document: SessionDocument, highlight: Optional[str] = None) -> None:
    summary = Table(show_header=False, box=None)
    summary.add_column("Key", style="dim")
    summary.add_column("Value")
    summary.add_row("Session", document.session_id)
    summary.add_row("Admin", document.admin_name)
    summary.add_row("Phase", str(document.phase))
    summary.add_row("Restaurant", describe(document.selected_restaurant_id))
    summary.add_row("Drink shop", describe(document.selected_drink_shop_id))
    deadline = document.deadline.astimezone().strftime("%Y-%m-%d %H:%M") if document.deadline else None
    if deadline and document.deadline_reached:
        deadline += " [red](reached)[/red]"
    summary.add_row("Deadline", describe(deadline))
    if document.is_closed:
        summary.add_row("Status", "[yellow]Closed early[/yellow]")
    console.print(Panel(summary, title="Order Session", border_style="cyan", expand=False))

    totals = session_totals(document)
    table = Table(title="Orders", show_lines=False)
    table.add_column("Participant")
    table.add_column("Items")
    table.add_column("Food", justify="right")
    table.add_column("Drinks", justify="right")
    table.add_column("Total", justify="right", style="bold")
    for person in document.participants:
        items = document.items_for(person.id)
        person_totals = totals.per_participant.get(person.id)
        name = f"[bold]{person.name}[/bold]" if person.id == highlight else person.name
        lines = [
            f"{item.name}{f' ({item.customizations})' if item.customizations else ''} "
            f"[dim]{item.instance_id}[/dim]"
            for item in items
        ]
        table.add_row(
            name,
            "\n".join(lines) or "[dim]-[/dim]",
            str(person_totals.restaurant) if person_totals else "0",
            str(person_totals.drink) if person_totals else "0",
            str(person_totals.grand) if person_totals else "0",
        )
    table.add_row("[bold]All[/bold]", "", str(totals.overall.restaurant), str(totals.overall.drink), str(totals.overall.grand))
    console.print(table)


@app.command()
def show(
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Session id (default: current)"),
) -> None:
    """Show the session state, every participant's items and the totals."""
    config = SyncConfig()

    async def _show():
        async with open_controller(config) as controller:
            participant = await controller.resume(load_identity(config, session_id))
            return participant, controller.document

    participant, document = run(_show())
    render_document(document, highlight=participant.id)
    console.print(f"[dim]You are {participant.display_name} ({participant.role}), step: {participant.local_phase}[/dim]")


@app.command()
def sources(
    restaurant: Optional[int] = typer.Option(None, "--restaurant", "-r", help="Restaurant id"),
    drink_shop: Optional[int] = typer.Option(None, "--drink-shop", "-d", help="Drink shop id"),
) -> None:
    """Select the restaurant and/or drink shop (admin only)."""
    config = SyncConfig()

    async def _select():
        async with open_controller(config) as controller:
            await controller.resume(load_identity(config))
            return await controller.select_source(restaurant, drink_shop)

    report_outcome(run(_select()), "Sources selected")


def _phase_command(action: str, message: str) -> None:
    config = SyncConfig()

    async def _run():
        async with open_controller(config) as controller:
            await controller.resume(load_identity(config))
            outcome = await getattr(controller, action)()
            return outcome, controller.document.phase

    outcome, phase = run(_run())
    report_outcome(outcome, f"{message}; session is now {phase}")


@app.command()
def advance() -> None:
    """Move the session to its next phase (admin only)."""
    _phase_command("advance_phase", "Session advanced")


@app.command()
def back() -> None:
    """Return the session to its previous phase (admin only)."""
    _phase_command("revert_phase", "Session reverted")


@app.command()
def close() -> None:
    """Close ordering early, before everyone finished (admin only)."""
    _phase_command("close_early", "Ordering closed")


@app.command()
def deadline(
    value: Optional[str] = typer.Argument(None, help="HH:MM or an ISO 8601 timestamp"),
    clear: bool = typer.Option(False, "--clear", help="Remove the deadline"),
) -> None:
    """Set or clear the ordering deadline (admin only)."""
    if value is None and not clear:
        console.print("[red]Error:[/red] Give a deadline or --clear")
        raise typer.Exit(1)
    config = SyncConfig()

    async def _set():
        async with open_controller(config) as controller:
            await controller.resume(load_identity(config))
            outcome = await controller.set_deadline(None if clear else value)
            return outcome, controller.document.deadline

    outcome, new_deadline = run(_set())
    if new_deadline is None:
        report_outcome(outcome, "Deadline cleared")
    else:
        report_outcome(outcome, f"Deadline set to {new_deadline.astimezone().strftime('%Y-%m-%d %H:%M')}")


@app.command()
def finalize(
    allow_empty: bool = typer.Option(False, "--allow-empty", help="Finalize even if nothing was ordered"),
) -> None:
    """Archive the closed session into history and clear it (admin only)."""
    config = SyncConfig()

    async def _finalize():
        async with open_controller(config) as controller:
            participant = await controller.resume(load_identity(config))
            return participant.session_id, await controller.finalize(allow_empty=allow_empty)

    session_id, order = run(_finalize())
    forget_identity(config, session_id)
    console.print(
        f"[green]✓[/green] Order [cyan]{order.order_id}[/cyan] saved to history "
        f"(total {order.total_amount})"
    )

