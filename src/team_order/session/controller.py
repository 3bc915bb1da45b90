"""Session controller.

Owns one client's ``ParticipantSession`` and the latest ``SessionDocument``
and exposes every user action. Write actions follow the same steps:

1. validate locally (raising ``SessionError`` subclasses synchronously),
2. update local state optimistically,
3. issue the remote write through ``SyncClient``,
4. return a ``SyncOutcome``.

An exhausted retry never rolls optimistic state back; it is recorded as a
pending retry that ``retry_sync()`` replays with a longer timeout.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence, Union

from ulid import ULID

from team_order.sync.primitives import RetryPolicy, Subscription, SyncClient, SyncFailure, WriteResult
from team_order.sync.store import Document, StoreUnavailableError, TransactionAborted, apply_merge

from . import aggregation
from .deadline import DeadlineWatcher, parse_deadline
from .errors import (
    AdminRequiredError,
    DeadlineClosedError,
    DocumentFormatError,
    NoActiveSessionError,
    NotJoinableError,
    OrderClosedError,
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
    now_utc,
    session_key,
)
from .phase import (
    derive_for_document,
    first_ordering_phase,
    has_ordered_drinks,
    is_returning_admin,
    next_local_phase,
    previous_local_phase,
    resolve_role,
)
from .reconcile import item_ids, reconcile
from .transitions import NEXT_PHASE, PREVIOUS_PHASE, requires_transaction, validate_transition

if TYPE_CHECKING:
    from team_order.catalog import MenuCatalog

logger = logging.getLogger(__name__)

WriteAction = Callable[[Optional[RetryPolicy]], Awaitable[WriteResult]]


class SyncOutcome(StrEnum):
    """How a write action ended."""

    SYNCED = "synced"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncErrorState:
    """User-visible record of the last write that exhausted its retries."""

    operation: str
    message: str
    occurred_at: datetime


@dataclass(frozen=True)
class PendingRetry:
    operation: str
    action: WriteAction


@dataclass(frozen=True)
class ControllerState:
    participant: Optional[ParticipantSession]
    document: Optional[SessionDocument]
    sync_error: Optional[SyncErrorState]


StateListener = Callable[[ControllerState], None]


def new_participant_id() -> str:
    return str(ULID()).lower()


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Name cannot be empty")
    return cleaned


def _outcome(result: WriteResult) -> SyncOutcome:
    return SyncOutcome.DEGRADED if result.degraded else SyncOutcome.SYNCED


class SessionController:
    def __init__(
        self,
        sync: SyncClient,
        catalog: Optional[MenuCatalog] = None,
        clock: Callable[[], datetime] = now_utc,
        deadline_poll_interval: float = 1.0,
    ) -> None:
        self.sync = sync
        self.catalog = catalog
        self.history = HistoryRepository(sync)
        self._clock = clock
        self._deadline_poll_interval = deadline_poll_interval
        self._participant: Optional[ParticipantSession] = None
        self._document: Optional[SessionDocument] = None
        self._last_derived: Optional[ParticipantPhase] = None
        self._in_flight: set[tuple[str, ...]] = set()
        self._acknowledged: Optional[tuple[str, ...]] = None
        self._subscription: Optional[Subscription] = None
        self._watcher: Optional[DeadlineWatcher] = None
        self._listeners: list[StateListener] = []
        self._last_state: Optional[ControllerState] = None
        self._sync_error: Optional[SyncErrorState] = None
        self._pending_retry: Optional[PendingRetry] = None
        self._cleared_order: Optional[HistoricalOrder] = None
        self._unarchived: Optional[HistoricalOrder] = None

    # ── Observable state ──────────────────────────────────────────

    @property
    def participant(self) -> Optional[ParticipantSession]:
        return self._participant

    @property
    def document(self) -> Optional[SessionDocument]:
        return self._document

    @property
    def sync_error(self) -> Optional[SyncErrorState]:
        return self._sync_error

    @property
    def pending_retry(self) -> Optional[PendingRetry]:
        return self._pending_retry

    @property
    def state(self) -> ControllerState:
        return ControllerState(self._participant, self._document, self._sync_error)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener``; it is called only when the state changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def totals(self) -> aggregation.SessionTotals:
        return aggregation.session_totals(self._require_document())

    def _notify(self) -> None:
        state = self.state
        if state == self._last_state:
            return
        self._last_state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Session listener failed")

    # ── Joining ───────────────────────────────────────────────────

    async def create_session(
        self,
        admin_name: str,
        members: Sequence[Union[str, Participant]] = (),
        session_id: Optional[str] = None,
    ) -> ParticipantSession:
        """Start a new session with the caller as admin.

        ``members`` are names or roster entries; duplicates and the admin
        themselves are skipped.
        """
        if session_id is not None and (not session_id.strip() or "/" in session_id):
            raise ValidationError(f"Invalid session id {session_id!r}")
        admin = Participant(new_participant_id(), _clean_name(admin_name))
        roster: list[Participant] = []
        for member in members:
            if not isinstance(member, Participant):
                member = Participant(new_participant_id(), (member or "").strip())
            if "." in member.id:
                raise ValidationError(f"Invalid participant id {member.id!r}")
            if not member.name or member.name == admin.name:
                continue
            if all(p.name != member.name and p.id != member.id for p in roster):
                roster.append(member)

        document = SessionDocument.new(
            session_id or str(ULID()).lower(), admin, roster, now=self._clock()
        )
        self._participant = ParticipantSession(
            id=admin.id, display_name=admin.name, role=Role.ADMIN, session_id=document.session_id
        )
        self._start_tracking(document)
        self._set_document(document)
        logger.info("Created session %s as %s", document.session_id, admin.name)

        payload = document.to_dict()
        await self._run_write(
            f"create session {document.session_id}",
            lambda policy: self.sync.set(document.key, payload, policy),
        )
        return self._participant

    async def join_session(
        self, session_id: str, name: str, role: Role = Role.MEMBER
    ) -> ParticipantSession:
        """Join an existing session.

        A participant whose name equals the recorded admin name is joined
        as admin, whatever role was requested.

        Raises:
            NotJoinableError: the session does not exist or is closed
            AdminRequiredError: admin role requested under another name
        """
        name = _clean_name(name)
        document = await self._load(session_id)
        if document.is_closed:
            raise NotJoinableError(f"Session {session_id} is closed")

        role = resolve_role(role, name, document)
        if role == Role.ADMIN:
            if not is_returning_admin(name, document):
                raise AdminRequiredError("Only the session's admin can join as admin")
            participant_id = document.admin_id
        else:
            existing = next((p for p in document.participants if p.name == name), None)
            if existing is not None:
                participant_id = existing.id
            else:
                person = Participant(new_participant_id(), name)
                document = await self._register_participant(document, person)
                participant_id = person.id

        self._participant = ParticipantSession(
            id=participant_id,
            display_name=name,
            role=role,
            session_id=session_id,
            local_items=document.items_for(participant_id),
        )
        self._start_tracking(document)
        self._set_document(document)
        logger.info("Joined session %s as %s (%s)", session_id, name, role)
        return self._participant

    async def resume(self, identity: ParticipantSession) -> ParticipantSession:
        """Rejoin with an identity saved on this device."""
        if "." in identity.id:
            raise ValidationError(f"Invalid participant id {identity.id!r}")
        document = await self._load(identity.session_id)
        self._participant = replace(
            identity,
            local_items=document.items_for(identity.id),
            local_phase=ParticipantPhase.WAITING_FOR_SETUP,
        )
        self._start_tracking(document)
        self._set_document(document)
        return self._participant

    async def attach(self) -> None:
        """Follow remote changes to the joined session."""
        participant = self._require_participant()
        if self._subscription is not None and self._subscription.is_active:
            return
        self._subscription = self.sync.subscribe(
            session_key(participant.session_id), self._on_remote_change, self._on_remote_error
        )

    async def detach(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

    async def _load(self, session_id: str) -> SessionDocument:
        key = session_key(session_id)
        snapshot = await self.sync.read(key)
        if not snapshot.available:
            raise StoreUnavailableError(f"Cannot reach the session store to load {key}")
        document = SessionDocument.from_remote(snapshot.data)
        if document is None:
            raise NotJoinableError(f"Session {session_id} does not exist")
        return document

    async def _register_participant(
        self, document: SessionDocument, person: Participant
    ) -> SessionDocument:
        def update(current: Optional[Document]) -> Document:
            if not current:
                raise NotJoinableError(f"Session {document.session_id} no longer exists")
            data = copy.deepcopy(current)
            people = data.setdefault("participants", [])
            if all(entry.get("id") != person.id for entry in people):
                people.append(person.to_dict())
            orders = data.setdefault("participant_orders", {})
            orders.setdefault(person.id, ParticipantOrder(display_name=person.name).to_dict())
            return data

        _, result = await self._run_write(
            f"register {person.name}",
            lambda policy: self.sync.transaction(document.key, update, policy),
        )
        if result is not None and result.payload:
            return SessionDocument.from_remote(result.payload) or document
        people = (*document.participants, person)
        orders = {**document.participant_orders, person.id: ParticipantOrder(person.name)}
        return replace(document, participants=people, participant_orders=orders)

    # ── Remote changes ────────────────────────────────────────────

    def _on_remote_change(self, data: Optional[Document]) -> None:
        if self._participant is None:
            return
        try:
            document = SessionDocument.from_remote(data)
        except DocumentFormatError as exc:
            logger.warning("Ignoring remote session update: %s", exc)
            return
        if document is not None and document.session_id != self._participant.session_id:
            logger.warning("Ignoring update for foreign session %s", document.session_id)
            return

        participant = reconcile(
            self._participant, document, frozenset(self._in_flight), self._acknowledged
        )
        if document is not None:
            remote_ids = item_ids(document.items_for(participant.id))
            if remote_ids == item_ids(participant.local_items):
                self._in_flight.clear()
            else:
                self._in_flight.discard(remote_ids)
            self._acknowledged = remote_ids

        self._participant = participant
        self._set_document(document)

    def _on_remote_error(self, exc: BaseException) -> None:
        logger.debug("Session subscription interrupted: %s", exc)

    def _start_tracking(self, document: SessionDocument) -> None:
        """Reset echo and phase tracking for a freshly loaded session."""
        self._last_derived = None
        self._in_flight.clear()
        self._acknowledged = item_ids(document.items_for(self._require_participant().id))

    def _set_document(self, document: Optional[SessionDocument], follow_phase: bool = True) -> None:
        """Adopt ``document`` and re-derive everything that follows from it."""
        self._document = document
        if self._participant is not None:
            self._participant = self._rederive(self._participant, document, follow_phase)
        self._manage_deadline_watcher()
        self._notify()

    def _rederive(
        self,
        participant: ParticipantSession,
        document: Optional[SessionDocument],
        follow_phase: bool = True,
    ) -> ParticipantSession:
        # Applied only when the derived value itself changes, so local
        # navigation between ordering steps is not undone by unrelated updates.
        # A participant's own item writes only move the baseline: adding a
        # drink keeps them on the drink step, echo included.
        derived = derive_for_document(
            document, participant.id, participant.role, participant.local_items
        )
        if derived == self._last_derived:
            return participant
        self._last_derived = derived
        if not follow_phase or derived == participant.local_phase:
            return participant
        logger.debug("Participant phase %s -> %s", participant.local_phase, derived)
        return replace(participant, local_phase=derived)

    def _manage_deadline_watcher(self) -> None:
        document = self._document
        wanted: Optional[datetime] = None
        if (
            document is not None
            and document.deadline is not None
            and not document.deadline_reached
            and not document.is_closed
            and document.phase != SessionPhase.CLOSING_OUT
        ):
            wanted = document.deadline

        watcher = self._watcher
        if watcher is not None and (wanted is None or watcher.deadline != wanted):
            if not watcher.fired:
                watcher.cancel()
            self._watcher = None
        if wanted is not None and self._watcher is None:
            self._watcher = DeadlineWatcher(
                wanted,
                self._on_deadline_reached,
                clock=self._clock,
                interval=self._deadline_poll_interval,
            )
            self._watcher.start()

    async def _on_deadline_reached(self) -> None:
        document = self._document
        if document is None or document.deadline_reached:
            return
        self._set_document(replace(document, deadline_reached=True))
        await self._run_write(
            "mark deadline reached",
            lambda policy: self.sync.write_merge(document.key, {"deadline_reached": True}, policy),
        )

    # ── Writes ────────────────────────────────────────────────────

    async def _run_write(
        self, operation: str, action: WriteAction
    ) -> tuple[SyncOutcome, Optional[WriteResult]]:
        try:
            result = await action(None)
        except SyncFailure as exc:
            logger.warning("%s failed: %s", operation, exc)
            self._pending_retry = PendingRetry(operation, action)
            self._sync_error = SyncErrorState(operation, str(exc.cause or exc), self._clock())
            self._notify()
            return SyncOutcome.FAILED, None
        return _outcome(result), result

    async def _merge(self, operation: str, partial: Document, follow_phase: bool = True) -> SyncOutcome:
        document = self._require_document()
        key = document.key
        self._set_document(
            SessionDocument.from_dict(apply_merge(document.to_dict(), partial)), follow_phase
        )
        outcome, _ = await self._run_write(
            operation, lambda policy: self.sync.write_merge(key, partial, policy)
        )
        return outcome

    async def retry_sync(self) -> SyncOutcome:
        """Replay the last failed write with a doubled per-attempt timeout."""
        pending = self._pending_retry
        if pending is None:
            return SyncOutcome.SYNCED
        try:
            result = await pending.action(self.sync.policy.scaled(2))
        except SyncFailure as exc:
            self._sync_error = SyncErrorState(pending.operation, str(exc.cause or exc), self._clock())
            self._notify()
            return SyncOutcome.FAILED
        self._pending_retry = None
        self._sync_error = None
        self._notify()
        return _outcome(result)

    def dismiss_sync_error(self) -> None:
        self._pending_retry = None
        self._sync_error = None
        self._notify()

    # ── Admin actions ─────────────────────────────────────────────

    async def select_source(
        self, restaurant_id: Optional[int] = None, drink_shop_id: Optional[int] = None
    ) -> SyncOutcome:
        document = self._require_admin()
        if restaurant_id is None and drink_shop_id is None:
            raise ValidationError("Select at least one restaurant or drink shop")
        if document.phase not in (SessionPhase.SETUP, SessionPhase.SOURCE_SELECTED):
            raise TransitionError(f"Sources cannot change during {document.phase}")
        self._check_store(StoreKind.RESTAURANT, restaurant_id)
        self._check_store(StoreKind.DRINK, drink_shop_id)

        partial: Document = {
            "selected_restaurant_id": restaurant_id,
            "selected_drink_shop_id": drink_shop_id,
        }
        if document.phase == SessionPhase.SETUP:
            self._check_transition(
                document,
                SessionPhase.SOURCE_SELECTED,
                restaurant_id=restaurant_id,
                drink_shop_id=drink_shop_id,
            )
            partial["phase"] = str(SessionPhase.SOURCE_SELECTED)
        return await self._merge("select sources", partial)

    async def advance_phase(self) -> SyncOutcome:
        document = self._require_admin()
        to_phase = NEXT_PHASE.get(document.phase)
        if to_phase is None:
            raise TransitionError(f"Session phase {document.phase} is terminal")
        self._check_transition(document, to_phase)
        if requires_transaction(document.phase, to_phase):
            return await self._close_ordering(document, early=False)
        return await self._merge(f"advance to {to_phase}", {"phase": str(to_phase)})

    async def revert_phase(self) -> SyncOutcome:
        document = self._require_admin()
        to_phase = PREVIOUS_PHASE.get(document.phase)
        if to_phase is None:
            raise TransitionError(f"Cannot go back from {document.phase}")
        self._check_transition(document, to_phase)
        return await self._merge(f"revert to {to_phase}", {"phase": str(to_phase)})

    async def close_early(self) -> SyncOutcome:
        """Close ordering before every item is collected."""
        document = self._require_admin()
        self._check_transition(document, SessionPhase.CLOSING_OUT)
        return await self._close_ordering(document, early=True)

    async def _close_ordering(self, document: SessionDocument, early: bool) -> SyncOutcome:
        changes: Document = {"phase": str(SessionPhase.CLOSING_OUT)}
        if early:
            changes["is_closed"] = True

        def update(current: Optional[Document]) -> Document:
            if not current or current.get("phase") != str(SessionPhase.ORDERING):
                raise TransactionAborted("session left the ordering phase")
            return apply_merge(current, changes)

        try:
            outcome, result = await self._run_write(
                "close ordering",
                lambda policy: self.sync.transaction(document.key, update, policy),
            )
        except TransactionAborted as exc:
            raise TransitionError(f"Cannot close ordering: {exc}") from exc
        self._adopt_write(result, apply_merge(document.to_dict(), changes))
        return outcome

    def _adopt_write(self, result: Optional[WriteResult], fallback: Document) -> None:
        """Adopt a transaction's written document, or ``fallback`` if it failed."""
        if result is not None and result.payload:
            self._set_document(SessionDocument.from_remote(result.payload))
        else:
            self._set_document(SessionDocument.from_dict(fallback))

    async def add_participant(self, name: str) -> Participant:
        document = self._require_admin()
        name = _clean_name(name)
        existing = next((p for p in document.participants if p.name == name), None)
        if existing is not None:
            return existing
        person = Participant(new_participant_id(), name)
        self._set_document(await self._register_participant(document, person))
        return person

    async def set_deadline(self, value: Any) -> SyncOutcome:
        """Set (or clear, with an empty value) the ordering deadline."""
        document = self._require_admin()
        if document.phase == SessionPhase.CLOSING_OUT:
            raise OrderClosedError("Ordering is already closed")
        now = self._clock()
        deadline = parse_deadline(value, now)
        partial: Document = {
            "deadline": deadline.isoformat() if deadline is not None else None,
            "deadline_reached": deadline is not None and deadline <= now,
        }
        return await self._merge("set deadline", partial)

    async def finalize(self, allow_empty: bool = False) -> HistoricalOrder:
        """Archive the session into history and clear it.

        The session is cleared first, in a transaction that builds the
        archive from the exact document it removes, so an order that lands
        while finalizing is either archived or rejected as closed. The
        history record is written afterwards, and only once the clear has
        committed; a failed history write is retried with the same record.

        Raises:
            SyncFailure: a step exhausted its retries (recorded for retry_sync)
        """
        document = self._require_admin()
        if document.phase != SessionPhase.CLOSING_OUT:
            raise TransitionError("Close ordering before finalizing")
        if not allow_empty and not any(order.items for order in document.participant_orders.values()):
            raise ValidationError("Nothing was ordered")

        try:
            order = await self._finalize_once()
        except SyncFailure as exc:
            self._pending_retry = PendingRetry("finalize", self._finalize_retry)
            self._sync_error = SyncErrorState("finalize", str(exc.cause or exc), self._clock())
            self._notify()
            raise
        self._clear_local_session()
        return order

    async def _finalize_retry(self, policy: Optional[RetryPolicy]) -> WriteResult:
        order = await self._finalize_once(policy)
        self._clear_local_session()
        return WriteResult(order.key, order.to_dict())

    def _clear_local_session(self) -> None:
        if self._participant is not None:
            self._participant = replace(self._participant, local_items=())
        self._in_flight.clear()
        self._acknowledged = None
        self._set_document(None)

    async def _finalize_once(self, policy: Optional[RetryPolicy] = None) -> HistoricalOrder:
        order = self._unarchived
        if order is None:
            order = await self._clear_session(policy)
            self._unarchived = order
        await self.history.record(order, policy)
        self._unarchived = None
        logger.info("Finalized session %s (total %s)", order.order_id, order.total_amount)
        return order

    async def _clear_session(self, policy: Optional[RetryPolicy]) -> HistoricalOrder:
        """Clear the session document and return the archive of what was cleared."""
        key = session_key(self._require_participant().session_id)
        clock, catalog = self._clock, self.catalog
        captured: list[HistoricalOrder] = []

        def clear(current: Optional[Document]) -> Document:
            document = SessionDocument.from_remote(current)
            if document is None:
                raise TransactionAborted("session was already cleared")
            captured[:] = [aggregation.build_historical_order(document, clock(), catalog)]
            return {}

        try:
            await self.sync.transaction(key, clear, policy)
        except SyncFailure:
            # the clear may have committed with its reply lost
            if captured:
                self._cleared_order = captured[-1]
            raise
        except TransactionAborted as exc:
            if self._cleared_order is not None:
                order, self._cleared_order = self._cleared_order, None
                logger.info("Session %s was cleared by an earlier attempt", order.order_id)
                return order
            raise NoActiveSessionError("Session was already finalized") from exc
        self._cleared_order = None
        return captured[-1]

    # ── Items ─────────────────────────────────────────────────────

    async def add_item(self, item: OrderItem, participant_id: Optional[str] = None) -> SyncOutcome:
        """Add one unit for the caller or, as admin, for another participant."""
        document = self._require_document()
        self._check_items_mutable(document)
        if item.store_kind == StoreKind.RESTAURANT and document.selected_restaurant_id is None:
            raise ValidationError("No restaurant was selected for this session")
        if item.store_kind == StoreKind.DRINK and document.selected_drink_shop_id is None:
            raise ValidationError("No drink shop was selected for this session")

        if participant_id is not None and participant_id != self._require_participant().id:
            return await self._edit_items_of(
                participant_id, lambda items: aggregation.add_item(items, item), f"add {item.name}"
            )
        participant = self._require_participant()
        return await self._write_own_items(
            aggregation.add_item(participant.local_items, item), f"add {item.name}"
        )

    async def remove_item(self, instance_id: str, participant_id: Optional[str] = None) -> SyncOutcome:
        document = self._require_document()
        self._check_items_mutable(document)
        if participant_id is not None and participant_id != self._require_participant().id:
            return await self._edit_items_of(
                participant_id,
                lambda items: aggregation.remove_item(items, instance_id),
                f"remove {instance_id}",
            )
        participant = self._require_participant()
        return await self._write_own_items(
            aggregation.remove_item(participant.local_items, instance_id), f"remove {instance_id}"
        )

    async def _write_own_items(self, items: tuple[OrderItem, ...], operation: str) -> SyncOutcome:
        participant = self._require_participant()
        self._participant = replace(participant, local_items=items)
        self._in_flight.add(item_ids(items))
        partial = aggregation.participant_order_payload(participant.id, participant.display_name, items)
        return await self._merge(operation, partial, follow_phase=False)

    async def _edit_items_of(
        self,
        participant_id: str,
        edit: Callable[[tuple[OrderItem, ...]], tuple[OrderItem, ...]],
        operation: str,
    ) -> SyncOutcome:
        # Applied against the current remote list so a concurrent write by
        # the participant themselves is not overwritten.
        document = self._require_admin()
        if document.participant(participant_id) is None and participant_id not in document.participant_orders:
            raise ValidationError(f"Unknown participant {participant_id}")
        clock = self._clock

        def update(current: Optional[Document]) -> Document:
            remote = SessionDocument.from_remote(current)
            if remote is None or remote.is_closed or remote.phase == SessionPhase.CLOSING_OUT:
                raise OrderClosedError("Ordering is closed")
            if remote.deadline_passed(clock()):
                raise DeadlineClosedError("The ordering deadline has passed")
            items = edit(remote.items_for(participant_id))
            return apply_merge(
                current,
                aggregation.participant_order_payload(
                    participant_id, remote.display_name_for(participant_id), items
                ),
            )

        local = apply_merge(
            document.to_dict(),
            aggregation.participant_order_payload(
                participant_id,
                document.display_name_for(participant_id),
                edit(document.items_for(participant_id)),
            ),
        )
        outcome, result = await self._run_write(
            operation, lambda policy: self.sync.transaction(document.key, update, policy)
        )
        self._adopt_write(result, local)
        return outcome

    # ── Local navigation ──────────────────────────────────────────

    def continue_ordering(self) -> ParticipantPhase:
        participant = self._require_participant()
        document = self._require_document()
        nxt = next_local_phase(
            participant.local_phase, document, has_ordered_drinks(participant.local_items)
        )
        if nxt is None:
            raise TransitionError(f"Nothing follows {participant.local_phase}")
        return self._move_to(nxt)

    def go_back(self) -> ParticipantPhase:
        participant = self._require_participant()
        previous = previous_local_phase(participant.local_phase, self._require_document())
        if previous is None:
            raise TransitionError(f"Cannot go back from {participant.local_phase}")
        return self._move_to(previous)

    def edit_order(self) -> ParticipantPhase:
        document = self._require_document()
        if document.phase != SessionPhase.ORDERING:
            raise OrderClosedError("Orders can only be edited while ordering is open")
        return self._move_to(first_ordering_phase(document))

    def reopen_personal_summary(self) -> ParticipantPhase:
        self._require_closing_admin()
        return self._move_to(ParticipantPhase.PERSONAL_REVIEW)

    def open_admin_review(self) -> ParticipantPhase:
        self._require_closing_admin()
        return self._move_to(ParticipantPhase.ADMIN_REVIEW)

    def _move_to(self, phase: ParticipantPhase) -> ParticipantPhase:
        self._participant = replace(self._require_participant(), local_phase=phase)
        self._notify()
        return phase

    # ── Guards ────────────────────────────────────────────────────

    def _require_participant(self) -> ParticipantSession:
        if self._participant is None:
            raise NoActiveSessionError("Join or create a session first")
        return self._participant

    def _require_document(self) -> SessionDocument:
        self._require_participant()
        if self._document is None:
            raise NoActiveSessionError("There is no active session")
        return self._document

    def _require_admin(self) -> SessionDocument:
        document = self._require_document()
        if not self._require_participant().is_admin:
            raise AdminRequiredError("Only the session admin can do this")
        return document

    def _require_closing_admin(self) -> None:
        document = self._require_admin()
        if document.phase != SessionPhase.CLOSING_OUT:
            raise TransitionError("Reviews open once ordering is closed")

    def _check_transition(self, document: SessionDocument, to_phase: SessionPhase, **sources: Any) -> None:
        ok, error = validate_transition(
            document, to_phase, is_admin=self._require_participant().is_admin, **sources
        )
        if not ok:
            raise TransitionError(error or f"Cannot move to {to_phase}")

    def _check_items_mutable(self, document: SessionDocument) -> None:
        if document.is_closed or document.phase == SessionPhase.CLOSING_OUT:
            raise OrderClosedError("Ordering is closed")
        if document.deadline_passed(self._clock()):
            raise DeadlineClosedError("The ordering deadline has passed")
        if not document.has_source:
            raise ValidationError("No restaurant or drink shop has been selected yet")
        if document.phase != SessionPhase.ORDERING:
            raise ValidationError("Ordering has not started yet")

    def _check_store(self, kind: StoreKind, store_id: Optional[int]) -> None:
        if store_id is None or self.catalog is None:
            return
        if self.catalog.get_store(kind, store_id) is None:
            raise ValidationError(f"Unknown {kind} {store_id}")
