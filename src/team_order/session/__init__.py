"""Collaborative ordering session: model, phases, aggregation and controller."""

from .aggregation import (
    OrderTotals,
    SessionTotals,
    add_item,
    build_historical_order,
    build_order_item,
    compute_totals,
    item_from_store,
    remove_item,
    remove_last,
    session_totals,
)
from .controller import SessionController, SyncErrorState, SyncOutcome
from .deadline import DeadlineWatcher, parse_deadline
from .errors import (
    AdminRequiredError,
    DeadlineClosedError,
    DocumentFormatError,
    ItemNotFoundError,
    NoActiveSessionError,
    NotJoinableError,
    OrderClosedError,
    SessionError,
    TransitionError,
    ValidationError,
)
from .history import HistoryRepository
from .models import (
    HistoricalOrder,
    OrderItem,
    Participant,
    ParticipantOrder,
    ParticipantPhase,
    ParticipantSession,
    Role,
    SessionDocument,
    SessionPhase,
    StoreKind,
)
from .phase import derive_participant_phase, is_returning_admin
from .reconcile import reconcile
from .transitions import validate_transition

__all__ = [
    "AdminRequiredError",
    "DeadlineClosedError",
    "DeadlineWatcher",
    "DocumentFormatError",
    "HistoricalOrder",
    "HistoryRepository",
    "ItemNotFoundError",
    "NoActiveSessionError",
    "NotJoinableError",
    "OrderClosedError",
    "OrderItem",
    "OrderTotals",
    "Participant",
    "ParticipantOrder",
    "ParticipantPhase",
    "ParticipantSession",
    "Role",
    "SessionController",
    "SessionDocument",
    "SessionError",
    "SessionPhase",
    "SessionTotals",
    "StoreKind",
    "SyncErrorState",
    "SyncOutcome",
    "TransitionError",
    "ValidationError",
    "add_item",
    "build_historical_order",
    "build_order_item",
    "compute_totals",
    "derive_participant_phase",
    "is_returning_admin",
    "item_from_store",
    "parse_deadline",
    "reconcile",
    "remove_item",
    "remove_last",
    "session_totals",
    "validate_transition",
]
