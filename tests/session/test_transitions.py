"""Tests for the session phase transition matrix and guards."""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from team_order.session.models import (
    OrderItem,
    Participant,
    ParticipantOrder,
    SessionDocument,
    SessionPhase,
    StoreKind,
)
from team_order.session.transitions import (
    ALLOWED_TRANSITIONS,
    NEXT_PHASE,
    PREVIOUS_PHASE,
    is_terminal,
    requires_transaction,
    validate_transition,
)

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def make_doc(phase=SessionPhase.SETUP, restaurant_id=None, drink_shop_id=None, items=()):
    doc = SessionDocument.new("s1", Participant("a", "Alice"), now=NOW)
    return replace(
        doc,
        phase=phase,
        selected_restaurant_id=restaurant_id,
        selected_drink_shop_id=drink_shop_id,
        participant_orders={"a": ParticipantOrder("Alice", tuple(items))},
    )


class TestMatrix:
    def test_next_and_previous_are_allowed(self):
        for source, target in NEXT_PHASE.items():
            assert (source, target) in ALLOWED_TRANSITIONS
        for source, target in PREVIOUS_PHASE.items():
            assert (source, target) in ALLOWED_TRANSITIONS

    def test_closing_out_is_terminal(self):
        assert is_terminal(SessionPhase.CLOSING_OUT)
        assert SessionPhase.CLOSING_OUT not in NEXT_PHASE
        assert SessionPhase.CLOSING_OUT not in PREVIOUS_PHASE

    def test_only_closing_is_transactional(self):
        assert requires_transaction(SessionPhase.ORDERING, SessionPhase.CLOSING_OUT)
        assert not requires_transaction(SessionPhase.SOURCE_SELECTED, SessionPhase.ORDERING)


class TestValidateTransition:
    def test_source_required_for_ordering(self):
        ok, error = validate_transition(
            make_doc(SessionPhase.SOURCE_SELECTED), SessionPhase.ORDERING, is_admin=True
        )
        assert ok is False
        assert "restaurant or drink shop" in error

    def test_ordering_with_drink_shop_only(self):
        ok, error = validate_transition(
            make_doc(SessionPhase.SOURCE_SELECTED, drink_shop_id=2), SessionPhase.ORDERING, is_admin=True
        )
        assert (ok, error) == (True, None)

    def test_selection_override(self):
        ok, _ = validate_transition(
            make_doc(SessionPhase.SETUP), SessionPhase.SOURCE_SELECTED, is_admin=True, restaurant_id=1
        )
        assert ok is True

    def test_members_cannot_transition(self):
        ok, error = validate_transition(
            make_doc(SessionPhase.SOURCE_SELECTED, restaurant_id=1), SessionPhase.ORDERING, is_admin=False
        )
        assert ok is False
        assert "admin" in error

    @pytest.mark.parametrize(
        "source,target",
        [
            (SessionPhase.SETUP, SessionPhase.ORDERING),
            (SessionPhase.SETUP, SessionPhase.CLOSING_OUT),
            (SessionPhase.SOURCE_SELECTED, SessionPhase.CLOSING_OUT),
        ],
    )
    def test_skipping_phases_is_illegal(self, source, target):
        ok, error = validate_transition(make_doc(source, restaurant_id=1), target, is_admin=True)
        assert ok is False
        assert "Illegal transition" in error

    def test_terminal_phase_rejects_everything(self):
        ok, error = validate_transition(
            make_doc(SessionPhase.CLOSING_OUT, restaurant_id=1), SessionPhase.ORDERING, is_admin=True
        )
        assert ok is False
        assert "terminal" in error

    def test_same_phase_rejected(self):
        ok, _ = validate_transition(make_doc(), SessionPhase.SETUP, is_admin=True)
        assert ok is False

    def test_revert_blocked_once_items_exist(self):
        item = OrderItem(1, "Rice", Decimal("4"), "i-1", StoreKind.RESTAURANT)
        doc = make_doc(SessionPhase.ORDERING, restaurant_id=1, items=[item])
        ok, error = validate_transition(doc, SessionPhase.SOURCE_SELECTED, is_admin=True)
        assert ok is False
        assert "already been ordered" in error

    def test_revert_allowed_without_items(self):
        doc = make_doc(SessionPhase.ORDERING, restaurant_id=1)
        assert validate_transition(doc, SessionPhase.SOURCE_SELECTED, is_admin=True) == (True, None)

    def test_closing_has_no_extra_guard(self):
        doc = make_doc(SessionPhase.ORDERING, restaurant_id=1)
        assert validate_transition(doc, SessionPhase.CLOSING_OUT, is_admin=True) == (True, None)
