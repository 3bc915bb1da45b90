"""Order aggregation: per-participant item lists, totals and finalization.

Item lists are immutable tuples; every mutation returns a new tuple and
the caller writes the participant's *whole* list back to the shared
document, so a retried write can never leave a half-applied item.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from ulid import ULID

from .errors import ItemNotFoundError, ValidationError
from .models import (
    HistoricalOrder,
    OrderItem,
    SessionDocument,
    StoreKind,
    now_utc,
    to_price,
)

if TYPE_CHECKING:
    from team_order.catalog import MenuCatalog, Store

ZERO = Decimal("0")


def new_instance_id() -> str:
    """ULID identifying one added unit; never reused within a session."""
    return str(ULID())


def describe_drink_customizations(
    sweetness: Optional[int] = None,
    ice: Optional[int] = None,
    note: Optional[str] = None,
) -> Optional[str]:
    """Human-readable customization text (sweetness / ice on a 0-10 scale)."""
    parts: list[str] = []
    for label, level in (("Sweetness", sweetness), ("Ice", ice)):
        if level is None:
            continue
        if not 0 <= level <= 10:
            raise ValidationError(f"{label} must be between 0 and 10")
        parts.append(f"{label} {level}/10")
    if note and note.strip():
        parts.append(note.strip())
    return ", ".join(parts) or None


def build_order_item(
    catalog_id: int,
    name: str,
    base_price: Any,
    store_kind: StoreKind,
    *,
    toppings: Sequence[tuple[str, Any]] = (),
    customizations: Optional[str] = None,
    surcharge: Any = 0,
) -> OrderItem:
    """Create a new order item with a fresh instance id.

    ``toppings`` are (name, price) pairs; their prices and ``surcharge`` are
    folded into ``unit_price`` here, not at aggregation time.
    """
    if not name or not name.strip():
        raise ValidationError("Item name cannot be empty")
    unit_price = to_price(base_price) + to_price(surcharge)
    for _, topping_price in toppings:
        unit_price += to_price(topping_price)
    return OrderItem(
        catalog_id=catalog_id,
        name=name.strip(),
        unit_price=unit_price,
        instance_id=new_instance_id(),
        store_kind=store_kind,
        customizations=customizations,
        toppings=tuple(topping_name for topping_name, _ in toppings),
    )


def item_from_store(
    store: Store,
    item_id: int,
    *,
    topping_names: Sequence[str] = (),
    customizations: Optional[str] = None,
) -> OrderItem:
    """Build an order item from a catalog store's menu."""
    menu_item = store.find_item(item_id)
    if menu_item is None:
        raise ValidationError(f"{store.name} has no menu item {item_id}")
    toppings: list[tuple[str, Decimal]] = []
    for topping_name in topping_names:
        topping = store.find_topping(topping_name)
        if topping is None:
            raise ValidationError(f"{store.name} does not offer topping {topping_name!r}")
        toppings.append((topping.name, topping.price))
    return build_order_item(
        menu_item.id,
        menu_item.name,
        menu_item.price,
        store.kind,
        toppings=toppings,
        customizations=customizations,
    )


def add_item(items: Sequence[OrderItem], item: OrderItem) -> tuple[OrderItem, ...]:
    if any(existing.instance_id == item.instance_id for existing in items):
        raise ValidationError(f"Item instance {item.instance_id} was already added")
    return (*items, item)


def remove_item(items: Sequence[OrderItem], instance_id: str) -> tuple[OrderItem, ...]:
    """Remove exactly one unit.

    When the target has interchangeable siblings (same catalog item, price
    and customizations), the most recently added of them is removed, which
    makes "remove one" behave as "undo the last add".
    """
    target = next((item for item in items if item.instance_id == instance_id), None)
    if target is None:
        raise ItemNotFoundError(f"No item with instance id {instance_id}")
    for index in range(len(items) - 1, -1, -1):
        if items[index].is_interchangeable_with(target):
            return (*items[:index], *items[index + 1:])
    raise ItemNotFoundError(f"No item with instance id {instance_id}")  # pragma: no cover


def remove_last(items: Sequence[OrderItem], catalog_id: int) -> tuple[OrderItem, ...]:
    """Remove the most recently added unit of ``catalog_id``."""
    for index in range(len(items) - 1, -1, -1):
        if items[index].catalog_id == catalog_id:
            return (*items[:index], *items[index + 1:])
    raise ItemNotFoundError(f"No item for catalog id {catalog_id}")


@dataclass(frozen=True)
class OrderTotals:
    restaurant: Decimal = ZERO
    drink: Decimal = ZERO

    @property
    def grand(self) -> Decimal:
        return self.restaurant + self.drink

    def __add__(self, other: OrderTotals) -> OrderTotals:
        return OrderTotals(self.restaurant + other.restaurant, self.drink + other.drink)


def compute_totals(items: Iterable[OrderItem]) -> OrderTotals:
    restaurant = ZERO
    drink = ZERO
    for item in items:
        if item.store_kind == StoreKind.RESTAURANT:
            restaurant += item.unit_price
        else:
            drink += item.unit_price
    return OrderTotals(restaurant=restaurant, drink=drink)


@dataclass(frozen=True)
class SessionTotals:
    overall: OrderTotals
    per_participant: dict[str, OrderTotals] = field(default_factory=dict)
    item_counts: dict[tuple[StoreKind, str], int] = field(default_factory=dict)


def session_totals(document: SessionDocument) -> SessionTotals:
    """Aggregate view for the admin: totals overall, per participant and per dish."""
    overall = OrderTotals()
    per_participant: dict[str, OrderTotals] = {}
    counts: dict[tuple[StoreKind, str], int] = {}
    for participant_id, order in document.participant_orders.items():
        totals = compute_totals(order.items)
        per_participant[participant_id] = totals
        overall = overall + totals
        for item in order.items:
            label = item.name if not item.customizations else f"{item.name} ({item.customizations})"
            counts[(item.store_kind, label)] = counts.get((item.store_kind, label), 0) + 1
    return SessionTotals(overall=overall, per_participant=per_participant, item_counts=counts)


def participant_order_payload(
    participant_id: str, display_name: str, items: Sequence[OrderItem]
) -> dict[str, Any]:
    """Merge payload rewriting one participant's full item list."""
    return {
        f"participant_orders.{participant_id}": {
            "display_name": display_name,
            "items": [item.to_dict() for item in items],
        }
    }


def build_historical_order(
    document: SessionDocument,
    completed_at: Optional[datetime] = None,
    catalog: Optional[MenuCatalog] = None,
) -> HistoricalOrder:
    restaurant_name = None
    drink_shop_name = None
    if catalog is not None:
        if document.selected_restaurant_id is not None:
            store = catalog.get_store(StoreKind.RESTAURANT, document.selected_restaurant_id)
            restaurant_name = store.name if store else None
        if document.selected_drink_shop_id is not None:
            store = catalog.get_store(StoreKind.DRINK, document.selected_drink_shop_id)
            drink_shop_name = store.name if store else None

    return HistoricalOrder(
        order_id=document.session_id,
        order_date=document.order_date,
        created_at=document.created_at,
        completed_at=completed_at or now_utc(),
        participants=document.participants,
        participant_orders=dict(document.participant_orders),
        selected_restaurant_id=document.selected_restaurant_id,
        selected_drink_shop_id=document.selected_drink_shop_id,
        total_amount=session_totals(document).overall.grand,
        restaurant_name=restaurant_name,
        drink_shop_name=drink_shop_name,
    )
