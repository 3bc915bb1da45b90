"""Participant phase derivation and local navigation.

A participant's phase is never chosen independently of the shared
document: ``derive_participant_phase`` is a pure function of the session
phase, the selected sources, whether the participant already contributed
a drink, and its role. Local navigation (continue / back / edit) only
moves between ordering steps the derivation allows.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .models import (
    OrderItem,
    ParticipantPhase,
    Role,
    SessionDocument,
    SessionPhase,
    StoreKind,
)

ORDERING_PHASES: frozenset[ParticipantPhase] = frozenset(
    {ParticipantPhase.ORDERING_RESTAURANT, ParticipantPhase.ORDERING_DRINKS}
)


def has_ordered_drinks(items: Iterable[OrderItem]) -> bool:
    return any(item.store_kind == StoreKind.DRINK for item in items)


def derive_participant_phase(
    session_phase: Optional[SessionPhase],
    restaurant_id: Optional[int],
    drink_shop_id: Optional[int],
    has_drinks: bool,
    role: Role,
) -> ParticipantPhase:
    """Return the phase a participant's client should be in.

    ``session_phase`` is None when there is no active session.
    """
    if session_phase is None:
        return ParticipantPhase.WAITING_FOR_SETUP

    if session_phase in (SessionPhase.SETUP, SessionPhase.SOURCE_SELECTED):
        if role == Role.ADMIN:
            return ParticipantPhase.SELECTING_SOURCE
        return ParticipantPhase.WAITING_FOR_SETUP

    if session_phase == SessionPhase.CLOSING_OUT:
        if role == Role.ADMIN:
            return ParticipantPhase.ADMIN_REVIEW
        return ParticipantPhase.PERSONAL_REVIEW

    # ordering: a drink already contributed means the drink step is done
    if has_drinks and drink_shop_id is not None:
        return ParticipantPhase.PERSONAL_REVIEW
    if restaurant_id is not None:
        return ParticipantPhase.ORDERING_RESTAURANT
    return ParticipantPhase.ORDERING_DRINKS


def derive_for_document(
    document: Optional[SessionDocument],
    participant_id: str,
    role: Role,
    items: Optional[Iterable[OrderItem]] = None,
) -> ParticipantPhase:
    """Derive from ``document``; ``items`` overrides the participant's remote list."""
    if document is None:
        return derive_participant_phase(None, None, None, False, role)
    if items is None:
        items = document.items_for(participant_id)
    return derive_participant_phase(
        document.phase,
        document.selected_restaurant_id,
        document.selected_drink_shop_id,
        has_ordered_drinks(items),
        role,
    )


def first_ordering_phase(document: SessionDocument) -> ParticipantPhase:
    if document.selected_restaurant_id is not None:
        return ParticipantPhase.ORDERING_RESTAURANT
    return ParticipantPhase.ORDERING_DRINKS


def next_local_phase(
    current: ParticipantPhase, document: SessionDocument, has_drinks: bool
) -> Optional[ParticipantPhase]:
    """Phase after "continue" from ``current``; None when there is no next step."""
    if document.phase != SessionPhase.ORDERING:
        return None
    if current == ParticipantPhase.ORDERING_RESTAURANT:
        if document.selected_drink_shop_id is not None and not has_drinks:
            return ParticipantPhase.ORDERING_DRINKS
        return ParticipantPhase.PERSONAL_REVIEW
    if current == ParticipantPhase.ORDERING_DRINKS:
        return ParticipantPhase.PERSONAL_REVIEW
    return None


def previous_local_phase(
    current: ParticipantPhase, document: SessionDocument
) -> Optional[ParticipantPhase]:
    """Phase after "back" from ``current``; None when there is no previous step."""
    if document.phase != SessionPhase.ORDERING:
        return None
    if current == ParticipantPhase.PERSONAL_REVIEW:
        if document.selected_drink_shop_id is not None:
            return ParticipantPhase.ORDERING_DRINKS
        return ParticipantPhase.ORDERING_RESTAURANT
    if current == ParticipantPhase.ORDERING_DRINKS and document.selected_restaurant_id is not None:
        return ParticipantPhase.ORDERING_RESTAURANT
    return None


def is_returning_admin(name: str, document: Optional[SessionDocument]) -> bool:
    """Name-based admin re-identification.

    A participant whose display name exactly equals the recorded admin name
    is treated as the admin, so the admin can rejoin from another device.
    This is a trust boundary: a name is not a credential.
    """
    return document is not None and name == document.admin_name


def resolve_role(requested: Role, name: str, document: Optional[SessionDocument]) -> Role:
    if is_returning_admin(name, document):
        return Role.ADMIN
    return requested
