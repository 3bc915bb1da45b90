"""History commands - browse finalized orders."""

from __future__ import annotations

import typer
from rich.table import Table

from team_order.session.aggregation import compute_totals
from team_order.session.errors import ItemNotFoundError
from team_order.sync.config import SyncConfig

from ..context import console, describe, open_controller, run

app = typer.Typer(
    help="Browse finalized orders",
    no_args_is_help=True,
)


@app.command(name="list")
def list_orders(
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of orders to show"),
) -> None:
    """List the most recent finalized orders, newest first."""
    config = SyncConfig()

    async def _recent():
        async with open_controller(config) as controller:
            return await controller.history.recent(limit)

    orders = run(_recent())
    if not orders:
        console.print("[dim]No finalized orders yet.[/dim]")
        return

    table = Table(title="Order History")
    table.add_column("Order", style="cyan")
    table.add_column("Date")
    table.add_column("Restaurant")
    table.add_column("Drinks")
    table.add_column("People", justify="right")
    table.add_column("Total", justify="right", style="bold")
    for order in orders:
        table.add_row(
            order.order_id,
            order.order_date.astimezone().strftime("%Y-%m-%d %H:%M"),
            describe(order.restaurant_name or order.selected_restaurant_id),
            describe(order.drink_shop_name or order.selected_drink_shop_id),
            str(len(order.participants)),
            str(order.total_amount),
        )
    console.print(table)


@app.command()
def show(order_id: str = typer.Argument(..., help="Order id from 'history list'")) -> None:
    """Show every participant's items of one finalized order."""
    config = SyncConfig()

    async def _get():
        async with open_controller(config) as controller:
            order = await controller.history.get(order_id)
            if order is None:
                raise ItemNotFoundError(f"No finalized order {order_id}")
            return order

    order = run(_get())
    console.print(f"[bold]Order {order.order_id}[/bold]  {order.completed_at.astimezone():%Y-%m-%d %H:%M}")
    table = Table(show_lines=False)
    table.add_column("Participant")
    table.add_column("Items")
    table.add_column("Subtotal", justify="right")
    for participant_id, entry in order.participant_orders.items():
        if not entry.items:
            continue
        lines = [
            f"{item.name}{f' ({item.customizations})' if item.customizations else ''}  {item.unit_price}"
            for item in entry.items
        ]
        table.add_row(entry.display_name or participant_id, "\n".join(lines), str(compute_totals(entry.items).grand))
    console.print(table)
    console.print(f"Total: [bold]{order.total_amount}[/bold]")
