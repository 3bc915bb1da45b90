"""Session data model.

Defines the shared ``SessionDocument`` replicated through the remote
store, the per-client ``ParticipantSession``, order items and the
immutable ``HistoricalOrder`` written at finalization. Every record
round-trips through ``to_dict()`` / ``from_dict()`` using JSON-compatible
values; prices are ``Decimal`` in memory so totals stay exact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Optional

from .errors import DocumentFormatError, ValidationError

SCHEMA_VERSION = 1

SESSIONS_COLLECTION = "sessions"
HISTORICAL_ORDERS_COLLECTION = "historical_orders"
HISTORY_INDEX_KEY = "history/order_list"


class SessionPhase(StrEnum):
    """Session-wide stage, shared by every participant."""

    SETUP = "setup"
    SOURCE_SELECTED = "source_selected"
    ORDERING = "ordering"
    CLOSING_OUT = "closing_out"


class ParticipantPhase(StrEnum):
    """Stage a single client is in, derived from the session and its role."""

    WAITING_FOR_SETUP = "waiting_for_setup"
    SELECTING_SOURCE = "selecting_source"
    ORDERING_RESTAURANT = "ordering_restaurant"
    ORDERING_DRINKS = "ordering_drinks"
    PERSONAL_REVIEW = "personal_review"
    ADMIN_REVIEW = "admin_review"


class Role(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class StoreKind(StrEnum):
    RESTAURANT = "restaurant"
    DRINK = "drink"


def session_key(session_id: str) -> str:
    return f"{SESSIONS_COLLECTION}/{session_id}"


def historical_order_key(order_id: str) -> str:
    return f"{HISTORICAL_ORDERS_COLLECTION}/{order_id}"


# ── Value helpers ─────────────────────────────────────────────────


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_price(value: Any) -> Decimal:
    """Coerce a JSON number (or numeric string) to ``Decimal``."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid price {value!r}")
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid price {value!r}") from exc


def price_to_json(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"expected int, got {value!r}")
    return int(value)


# ── Records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Participant:
    id: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        return cls(id=str(data["id"]), name=str(data["name"]))


@dataclass(frozen=True)
class OrderItem:
    """One physically added unit of a menu item.

    Immutable once added. Surcharges (toppings, customizations) are already
    folded into ``unit_price``.
    """

    catalog_id: int
    name: str
    unit_price: Decimal
    instance_id: str
    store_kind: StoreKind
    customizations: Optional[str] = None
    toppings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        price = to_price(self.unit_price)
        if price < 0:
            raise ValidationError(f"Item {self.name!r} has a negative price")
        if not self.instance_id:
            raise ValidationError("Order items need an instance id")
        object.__setattr__(self, "unit_price", price)
        object.__setattr__(self, "store_kind", StoreKind(self.store_kind))
        object.__setattr__(self, "toppings", tuple(self.toppings))

    def is_interchangeable_with(self, other: OrderItem) -> bool:
        """True when both are units of the same, identically customized item."""
        return (
            self.catalog_id == other.catalog_id
            and self.store_kind == other.store_kind
            and self.unit_price == other.unit_price
            and self.customizations == other.customizations
            and self.toppings == other.toppings
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "catalog_id": self.catalog_id,
            "name": self.name,
            "unit_price": price_to_json(self.unit_price),
            "instance_id": self.instance_id,
            "store_kind": str(self.store_kind),
        }
        if self.customizations:
            d["customizations"] = self.customizations
        if self.toppings:
            d["toppings"] = list(self.toppings)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderItem:
        return cls(
            catalog_id=int(data["catalog_id"]),
            name=str(data["name"]),
            unit_price=to_price(data["unit_price"]),
            instance_id=str(data["instance_id"]),
            store_kind=StoreKind(data["store_kind"]),
            customizations=data.get("customizations") or None,
            toppings=tuple(data.get("toppings") or ()),
        )


@dataclass(frozen=True)
class ParticipantOrder:
    display_name: str
    items: tuple[OrderItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParticipantOrder:
        return cls(
            display_name=str(data.get("display_name", "")),
            items=tuple(OrderItem.from_dict(item) for item in data.get("items") or ()),
        )


@dataclass(frozen=True)
class SessionDocument:
    """The shared document of one ordering session.

    Optional fields are always explicit; ``from_remote`` normalizes
    whatever the store returns.
    """

    session_id: str
    admin_id: str
    admin_name: str
    created_at: datetime
    order_date: datetime
    phase: SessionPhase = SessionPhase.SETUP
    participants: tuple[Participant, ...] = ()
    participant_orders: dict[str, ParticipantOrder] = field(default_factory=dict)
    selected_restaurant_id: Optional[int] = None
    selected_drink_shop_id: Optional[int] = None
    deadline: Optional[datetime] = None
    deadline_reached: bool = False
    is_closed: bool = False
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def new(
        cls,
        session_id: str,
        admin: Participant,
        participants: list[Participant] | tuple[Participant, ...] = (),
        now: Optional[datetime] = None,
    ) -> SessionDocument:
        now = now or now_utc()
        roster: list[Participant] = []
        for person in [admin, *participants]:
            if all(existing.id != person.id for existing in roster):
                roster.append(person)
        return cls(
            session_id=session_id,
            admin_id=admin.id,
            admin_name=admin.name,
            created_at=now,
            order_date=now,
            participants=tuple(roster),
            participant_orders={p.id: ParticipantOrder(display_name=p.name) for p in roster},
        )

    @property
    def key(self) -> str:
        return session_key(self.session_id)

    @property
    def has_source(self) -> bool:
        return self.selected_restaurant_id is not None or self.selected_drink_shop_id is not None

    def participant(self, participant_id: str) -> Optional[Participant]:
        for person in self.participants:
            if person.id == participant_id:
                return person
        return None

    def items_for(self, participant_id: str) -> tuple[OrderItem, ...]:
        entry = self.participant_orders.get(participant_id)
        return entry.items if entry is not None else ()

    def display_name_for(self, participant_id: str) -> str:
        entry = self.participant_orders.get(participant_id)
        if entry is not None and entry.display_name:
            return entry.display_name
        person = self.participant(participant_id)
        return person.name if person is not None else participant_id

    def deadline_passed(self, now: Optional[datetime] = None) -> bool:
        """True once the deadline flag is set or the wall clock passed it."""
        if self.deadline_reached:
            return True
        if self.deadline is None:
            return False
        return (now or now_utc()) >= self.deadline

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "session_id": self.session_id,
            "phase": str(self.phase),
            "admin_id": self.admin_id,
            "admin_name": self.admin_name,
            "participants": [p.to_dict() for p in self.participants],
            "participant_orders": {
                pid: order.to_dict() for pid, order in self.participant_orders.items()
            },
            "selected_restaurant_id": self.selected_restaurant_id,
            "selected_drink_shop_id": self.selected_drink_shop_id,
            "deadline": _format_dt(self.deadline),
            "deadline_reached": self.deadline_reached,
            "is_closed": self.is_closed,
            "created_at": _format_dt(self.created_at),
            "order_date": _format_dt(self.order_date),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionDocument:
        created_at = _parse_dt(data.get("created_at")) or now_utc()
        return cls(
            session_id=str(data["session_id"]),
            admin_id=str(data["admin_id"]),
            admin_name=str(data["admin_name"]),
            created_at=created_at,
            order_date=_parse_dt(data.get("order_date")) or created_at,
            phase=SessionPhase(data.get("phase", SessionPhase.SETUP)),
            participants=tuple(Participant.from_dict(p) for p in data.get("participants") or ()),
            participant_orders={
                str(pid): ParticipantOrder.from_dict(order)
                for pid, order in (data.get("participant_orders") or {}).items()
            },
            selected_restaurant_id=_optional_int(data.get("selected_restaurant_id")),
            selected_drink_shop_id=_optional_int(data.get("selected_drink_shop_id")),
            deadline=_parse_dt(data.get("deadline")),
            deadline_reached=bool(data.get("deadline_reached", False)),
            is_closed=bool(data.get("is_closed", False)),
            schema_version=int(data.get("schema_version", SCHEMA_VERSION)),
        )

    @classmethod
    def from_remote(cls, data: Optional[dict[str, Any]]) -> Optional[SessionDocument]:
        """Normalize a raw store snapshot.

        ``None`` and ``{}`` (a cleared session) both mean "no active session".
        """
        if not data:
            return None
        try:
            document = cls.from_dict(data)
        except (KeyError, ValueError, TypeError, ValidationError) as exc:
            raise DocumentFormatError(f"Malformed session document: {exc}") from exc
        if document.schema_version > SCHEMA_VERSION:
            raise DocumentFormatError(
                f"Session document schema {document.schema_version} is newer than supported {SCHEMA_VERSION}"
            )
        return document


@dataclass(frozen=True)
class ParticipantSession:
    """One client's local view of itself. Never persisted verbatim."""

    id: str
    display_name: str
    role: Role
    session_id: str
    local_phase: ParticipantPhase = ParticipantPhase.WAITING_FOR_SETUP
    local_items: tuple[OrderItem, ...] = ()

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def identity_dict(self) -> dict[str, Any]:
        """Identity fields only, for rejoining from the same device."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": str(self.role),
            "session_id": self.session_id,
        }

    @classmethod
    def from_identity(cls, data: dict[str, Any]) -> ParticipantSession:
        return cls(
            id=str(data["id"]),
            display_name=str(data["display_name"]),
            role=Role(data["role"]),
            session_id=str(data["session_id"]),
        )


@dataclass(frozen=True)
class HistoricalOrder:
    """Immutable record of a finalized session."""

    order_id: str
    order_date: datetime
    created_at: datetime
    completed_at: datetime
    participants: tuple[Participant, ...]
    participant_orders: dict[str, ParticipantOrder]
    selected_restaurant_id: Optional[int]
    selected_drink_shop_id: Optional[int]
    total_amount: Decimal
    restaurant_name: Optional[str] = None
    drink_shop_name: Optional[str] = None

    @property
    def key(self) -> str:
        return historical_order_key(self.order_id)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "order_id": self.order_id,
            "order_date": _format_dt(self.order_date),
            "created_at": _format_dt(self.created_at),
            "completed_at": _format_dt(self.completed_at),
            "participants": [p.to_dict() for p in self.participants],
            "participant_orders": {
                pid: order.to_dict() for pid, order in self.participant_orders.items()
            },
            "selected_restaurant_id": self.selected_restaurant_id,
            "selected_drink_shop_id": self.selected_drink_shop_id,
            "total_amount": price_to_json(self.total_amount),
        }
        if self.restaurant_name:
            d["restaurant_name"] = self.restaurant_name
        if self.drink_shop_name:
            d["drink_shop_name"] = self.drink_shop_name
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoricalOrder:
        completed_at = _parse_dt(data["completed_at"])
        return cls(
            order_id=str(data["order_id"]),
            order_date=_parse_dt(data.get("order_date")) or completed_at,
            created_at=_parse_dt(data.get("created_at")) or completed_at,
            completed_at=completed_at,
            participants=tuple(Participant.from_dict(p) for p in data.get("participants") or ()),
            participant_orders={
                str(pid): ParticipantOrder.from_dict(order)
                for pid, order in (data.get("participant_orders") or {}).items()
            },
            selected_restaurant_id=_optional_int(data.get("selected_restaurant_id")),
            selected_drink_shop_id=_optional_int(data.get("selected_drink_shop_id")),
            total_amount=to_price(data.get("total_amount", 0)),
            restaurant_name=data.get("restaurant_name"),
            drink_shop_name=data.get("drink_shop_name"),
        )
