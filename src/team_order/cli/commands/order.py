"""Order commands - add and remove your items."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from team_order.session.aggregation import (
    build_order_item,
    compute_totals,
    describe_drink_customizations,
    item_from_store,
)
from team_order.session.controller import SessionController
from team_order.session.errors import ValidationError
from team_order.session.models import OrderItem, StoreKind
from team_order.sync.config import SyncConfig

from ..context import console, load_identity, open_controller, report_outcome, run

app = typer.Typer(
    help="Add, remove and list your order items",
    no_args_is_help=True,
)


def _build_item(
    controller: SessionController,
    kind: StoreKind,
    item_id: int,
    name: Optional[str],
    price: Optional[float],
    toppings: list[str],
    customizations: Optional[str],
) -> OrderItem:
    document = controller.document
    store_id = (
        document.selected_restaurant_id if kind == StoreKind.RESTAURANT else document.selected_drink_shop_id
    )
    store = None
    if controller.catalog is not None and store_id is not None:
        store = controller.catalog.get_store(kind, store_id)
    if store is not None and store.find_item(item_id) is not None:
        return item_from_store(store, item_id, topping_names=toppings, customizations=customizations)
    if name is None or price is None:
        raise ValidationError(f"Item {item_id} is not on the menu; pass --name and --price")
    return build_order_item(item_id, name, price, kind, customizations=customizations)


@app.command()
def add(
    kind: StoreKind = typer.Argument(..., help="restaurant or drink"),
    item_id: int = typer.Argument(..., help="Menu item id"),
    name: Optional[str] = typer.Option(None, "--name", help="Item name (custom items)"),
    price: Optional[float] = typer.Option(None, "--price", help="Unit price (custom items)"),
    topping: Optional[list[str]] = typer.Option(None, "--topping", "-t", help="Drink topping (repeatable)"),
    sweetness: Optional[int] = typer.Option(None, "--sweetness", min=0, max=10, help="Sweetness 0-10"),
    ice: Optional[int] = typer.Option(None, "--ice", min=0, max=10, help="Ice 0-10"),
    note: Optional[str] = typer.Option(None, "--note", help="Free-form request"),
    quantity: int = typer.Option(1, "--quantity", "-q", min=1, max=20, help="Units to add"),
    for_participant: Optional[str] = typer.Option(
        None, "--for", help="Participant id to order for (admin only)"
    ),
) -> None:
    """Add an item to your order.

    Examples:
        team-order order add restaurant 101
        team-order order add drink 7 --sweetness 3 --ice 5 --topping Pearls
        team-order order add restaurant 900 --name "Side salad" --price 40
    """
    config = SyncConfig()
    customizations = None
    if kind == StoreKind.DRINK:
        customizations = describe_drink_customizations(sweetness, ice, note)
    elif note:
        customizations = note.strip() or None

    async def _add():
        async with open_controller(config) as controller:
            await controller.resume(load_identity(config))
            outcome = None
            added: list[OrderItem] = []
            for _ in range(quantity):
                item = _build_item(controller, kind, item_id, name, price, topping or [], customizations)
                outcome = await controller.add_item(item, participant_id=for_participant)
                added.append(item)
            return outcome, added

    outcome, added = run(_add())
    label = added[0].name if added else str(item_id)
    report_outcome(outcome, f"Added {len(added)} x {label} ({added[0].unit_price} each)")


@app.command()
def remove(
    instance_id: str = typer.Argument(..., help="Instance id shown by 'order list'"),
    for_participant: Optional[str] = typer.Option(
        None, "--for", help="Participant id to edit (admin only)"
    ),
) -> None:
    """Remove one unit of an item from your order."""
    config = SyncConfig()

    async def _remove():
        async with open_controller(config) as controller:
            await controller.resume(load_identity(config))
            return await controller.remove_item(instance_id, participant_id=for_participant)

    report_outcome(run(_remove()), "Item removed")


@app.command(name="list")
def list_items() -> None:
    """List your own items and subtotal."""
    config = SyncConfig()

    async def _list():
        async with open_controller(config) as controller:
            participant = await controller.resume(load_identity(config))
            return participant.local_items

    items = run(_list())
    if not items:
        console.print("[dim]You have not ordered anything yet.[/dim]")
        return

    table = Table(show_lines=False)
    table.add_column("Instance", style="dim")
    table.add_column("Store")
    table.add_column("Item")
    table.add_column("Price", justify="right")
    for item in items:
        details = f" ({item.customizations})" if item.customizations else ""
        if item.toppings:
            details += f" + {', '.join(item.toppings)}"
        table.add_row(item.instance_id, str(item.store_kind), f"{item.name}{details}", str(item.unit_price))
    totals = compute_totals(items)
    console.print(table)
    console.print(f"Food {totals.restaurant} + Drinks {totals.drink} = [bold]{totals.grand}[/bold]")
