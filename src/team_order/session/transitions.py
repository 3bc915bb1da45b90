"""Session phase transition matrix and guard conditions.

Implements the 4-phase session state machine
(setup -> source_selected -> ordering -> closing_out), its legal
transition pairs, and the guards each pair must pass.
"""

from __future__ import annotations

from typing import Optional

from .models import SessionDocument, SessionPhase

TERMINAL_PHASES: frozenset[SessionPhase] = frozenset({SessionPhase.CLOSING_OUT})

ALLOWED_TRANSITIONS: frozenset[tuple[SessionPhase, SessionPhase]] = frozenset(
    {
        (SessionPhase.SETUP, SessionPhase.SOURCE_SELECTED),
        (SessionPhase.SOURCE_SELECTED, SessionPhase.SETUP),
        (SessionPhase.SOURCE_SELECTED, SessionPhase.ORDERING),
        (SessionPhase.ORDERING, SessionPhase.SOURCE_SELECTED),
        (SessionPhase.ORDERING, SessionPhase.CLOSING_OUT),
    }
)

# Forward step taken by "advance"; closing_out has none.
NEXT_PHASE: dict[SessionPhase, SessionPhase] = {
    SessionPhase.SETUP: SessionPhase.SOURCE_SELECTED,
    SessionPhase.SOURCE_SELECTED: SessionPhase.ORDERING,
    SessionPhase.ORDERING: SessionPhase.CLOSING_OUT,
}

PREVIOUS_PHASE: dict[SessionPhase, SessionPhase] = {
    SessionPhase.SOURCE_SELECTED: SessionPhase.SETUP,
    SessionPhase.ORDERING: SessionPhase.SOURCE_SELECTED,
}

# Transitions that must run as an atomic read-modify-write.
TRANSACTIONAL_TRANSITIONS: frozenset[tuple[SessionPhase, SessionPhase]] = frozenset(
    {(SessionPhase.ORDERING, SessionPhase.CLOSING_OUT)}
)

_GUARDED_TRANSITIONS: dict[tuple[SessionPhase, SessionPhase], str] = {
    (SessionPhase.SETUP, SessionPhase.SOURCE_SELECTED): "source_required",
    (SessionPhase.SOURCE_SELECTED, SessionPhase.ORDERING): "source_required",
    (SessionPhase.ORDERING, SessionPhase.SOURCE_SELECTED): "no_items_collected",
}


def is_terminal(phase: SessionPhase) -> bool:
    return phase in TERMINAL_PHASES


def _guard_admin(is_admin: bool) -> tuple[bool, Optional[str]]:
    """Guard: every session transition is driven by the admin."""
    if not is_admin:
        return False, "Only the session admin can change the session phase"
    return True, None


def _guard_source_required(
    restaurant_id: Optional[int], drink_shop_id: Optional[int]
) -> tuple[bool, Optional[str]]:
    """Guard: ordering needs at least one of restaurant / drink shop."""
    if restaurant_id is None and drink_shop_id is None:
        return False, "Select at least one restaurant or drink shop first"
    return True, None


def _guard_no_items_collected(document: SessionDocument) -> tuple[bool, Optional[str]]:
    """Guard: sources cannot be reopened once items were ordered against them."""
    if any(order.items for order in document.participant_orders.values()):
        return False, "Items have already been ordered; sources can no longer change"
    return True, None


def validate_transition(
    document: SessionDocument,
    to_phase: SessionPhase,
    *,
    is_admin: bool,
    restaurant_id: Optional[int] = None,
    drink_shop_id: Optional[int] = None,
) -> tuple[bool, Optional[str]]:
    """Check whether ``document`` may move to ``to_phase``.

    ``restaurant_id`` / ``drink_shop_id`` override the document's current
    selections, for transitions written together with a new selection.

    Returns (ok, error_message).
    """
    from_phase = document.phase
    if from_phase == to_phase:
        return False, f"Session is already in {from_phase}"
    if is_terminal(from_phase):
        return False, f"Session phase {from_phase} is terminal"
    if (from_phase, to_phase) not in ALLOWED_TRANSITIONS:
        return False, f"Illegal transition {from_phase} -> {to_phase}"

    ok, error = _guard_admin(is_admin)
    if not ok:
        return ok, error

    guard = _GUARDED_TRANSITIONS.get((from_phase, to_phase))
    if guard == "source_required":
        if restaurant_id is None and drink_shop_id is None:
            restaurant_id = document.selected_restaurant_id
            drink_shop_id = document.selected_drink_shop_id
        return _guard_source_required(restaurant_id, drink_shop_id)
    if guard == "no_items_collected":
        return _guard_no_items_collected(document)
    return True, None


def requires_transaction(from_phase: SessionPhase, to_phase: SessionPhase) -> bool:
    return (from_phase, to_phase) in TRANSACTIONAL_TRANSITIONS
