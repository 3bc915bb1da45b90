"""Reconcile a client's optimistic item list with remote snapshots."""

from __future__ import annotations

from dataclasses import replace
from typing import AbstractSet, Optional, Sequence

from .models import OrderItem, ParticipantPhase, ParticipantSession, SessionDocument


def item_ids(items: Sequence[OrderItem]) -> tuple[str, ...]:
    return tuple(item.instance_id for item in items)


def reconcile(
    local: ParticipantSession,
    remote: Optional[SessionDocument],
    in_flight: AbstractSet[tuple[str, ...]] = frozenset(),
    acknowledged: Optional[tuple[str, ...]] = None,
) -> ParticipantSession:
    """Return ``local`` adjusted to a remote change.

    ``in_flight`` holds the instance-id tuples of item lists this client
    has written but not yet seen echoed. A remote list matching one of them
    is an echo (possibly stale) of our own write and leaves local items
    alone. ``acknowledged`` is the participant's list as last seen
    remotely; while a write is in flight, a remote list still equal to it
    means nobody else touched the entry yet, so local items are kept too.
    Any other difference means someone else changed the list, and the
    remote wins.

    Only called on remote-change events, never after a local write.
    """
    if remote is None or remote.session_id != local.session_id:
        if not local.local_items and local.local_phase == ParticipantPhase.WAITING_FOR_SETUP:
            return local
        return replace(local, local_items=(), local_phase=ParticipantPhase.WAITING_FOR_SETUP)

    remote_items = remote.items_for(local.id)
    remote_ids = item_ids(remote_items)
    if remote_ids == item_ids(local.local_items):
        return local
    if remote_ids in in_flight:
        return local
    if in_flight and remote_ids == acknowledged:
        return local
    return replace(local, local_items=tuple(remote_items))
