"""Resilient wrappers around the remote document store.

Every remote call goes through ``with_retry`` (exponential backoff with
jitter) and ``with_timeout``. Each attempt reports to the connection
monitor. When the store is entirely unreachable, writes are applied to a
local snapshot cache, queued for replay and resolved as *degraded* instead
of failing. Transactions are the exception: they need the live document
and fail with ``SyncFailure`` instead.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from contextlib import aclosing
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import SyncConfig
from .connection import ConnectionMonitor, get_monitor
from .queue import OfflineQueue
from .store import (
    Document,
    DocumentStore,
    StoreUnavailableError,
    TransientStoreError,
    UpdateFn,
    apply_merge,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class SyncTimeout(TransientStoreError):
    """A single attempt exceeded its timeout."""


class SyncFailure(Exception):
    """Raised when an operation still fails after every retry attempt."""

    def __init__(self, operation: str, attempts: int, cause: Optional[BaseException]) -> None:
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{operation} failed after {attempts} attempt(s): {cause}")


# OSError covers ConnectionError and socket-level failures.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientStoreError, OSError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry, backoff and timeout settings for one remote operation."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 1.0
    timeout: float = 15.0

    @classmethod
    def from_config(cls, config: SyncConfig) -> RetryPolicy:
        return cls(
            max_attempts=int(config.get("sync", "max_attempts")),
            base_delay=float(config.get("sync", "base_delay_seconds")),
            max_delay=float(config.get("sync", "max_delay_seconds")),
            timeout=float(config.get("sync", "timeout_seconds")),
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (0-indexed), without jitter.

        Formula: min(base * 2^attempt, max)
        """
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def jittered_delay(self, attempt: int) -> float:
        return self.backoff_delay(attempt) + random.uniform(0, self.jitter)

    def scaled(self, factor: float) -> RetryPolicy:
        """Policy with a longer per-attempt timeout, used for manual retries."""
        return replace(self, timeout=self.timeout * factor)


async def with_timeout(awaitable: Awaitable[T], timeout: float) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    On expiry the attempt is abandoned and ``SyncTimeout`` is raised. The
    remote side may still apply the request later, so callers must be
    idempotent.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise SyncTimeout(f"operation timed out after {timeout:g}s") from exc


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str = "operation",
    policy: Optional[RetryPolicy] = None,
    monitor: Optional[ConnectionMonitor] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` with timeout and exponential backoff.

    Only transient errors are retried. ``StoreUnavailableError`` and any
    other exception propagate on the first occurrence.

    Raises:
        SyncFailure: every attempt failed with a transient error
    """
    policy = policy or RetryPolicy()
    monitor = monitor or get_monitor()
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        try:
            result = await with_timeout(operation(), policy.timeout)
        except StoreUnavailableError:
            raise
        except TRANSIENT_ERRORS as exc:
            last_error = exc
            monitor.report(False, str(exc) or type(exc).__name__)
            logger.warning(
                "%s failed (attempt %d/%d): %s", name, attempt + 1, policy.max_attempts, exc
            )
            if attempt < policy.max_attempts - 1:
                delay = policy.jittered_delay(attempt)
                logger.debug("Retrying %s in %.2fs", name, delay)
                await sleep(delay)
            continue
        monitor.report(True)
        return result

    raise SyncFailure(name, policy.max_attempts, last_error)


@dataclass(frozen=True)
class Snapshot:
    """Result of a read.

    ``source`` is ``remote`` for a fresh read, ``cache`` for the last known
    snapshot served while offline, and ``none`` when offline with nothing
    cached (an explicit "no data" result, distinct from "does not exist").
    """

    key: str
    data: Optional[Document]
    source: str = "remote"

    @property
    def exists(self) -> bool:
        return bool(self.data)

    @property
    def available(self) -> bool:
        return self.source != "none"


@dataclass(frozen=True)
class WriteResult:
    """Outcome of an accepted write; ``degraded`` means queued while offline."""

    key: str
    payload: Optional[Document]
    degraded: bool = False


ChangeHandler = Callable[[Optional[Document]], None]
ErrorHandler = Callable[[BaseException], None]


class SyncClient:
    """Uniform resilience policy over a ``DocumentStore``."""

    def __init__(
        self,
        store: DocumentStore,
        monitor: Optional[ConnectionMonitor] = None,
        policy: Optional[RetryPolicy] = None,
        queue: Optional[OfflineQueue] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.monitor = monitor or get_monitor()
        self.policy = policy or RetryPolicy()
        self.queue = queue
        self._sleep = sleep
        self._cache: dict[str, Optional[Document]] = {}

    def cached(self, key: str) -> Optional[Document]:
        doc = self._cache.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def _retry(self, operation: Callable[[], Awaitable[T]], name: str, policy: Optional[RetryPolicy]) -> T:
        return await with_retry(
            operation,
            name=name,
            policy=policy or self.policy,
            monitor=self.monitor,
            sleep=self._sleep,
        )

    # ── Operations ────────────────────────────────────────────────

    async def read(self, key: str, policy: Optional[RetryPolicy] = None) -> Snapshot:
        try:
            data = await self._retry(lambda: self.store.get(key), f"read {key}", policy)
        except StoreUnavailableError as exc:
            self._report_offline(exc)
            if key in self._cache:
                return Snapshot(key, self.cached(key), source="cache")
            return Snapshot(key, None, source="none")
        self._cache[key] = data
        return Snapshot(key, copy.deepcopy(data), source="remote")

    async def write_merge(
        self, key: str, partial: Document, policy: Optional[RetryPolicy] = None
    ) -> WriteResult:
        """Shallow-merge ``partial`` into the document at ``key``."""
        try:
            await self._retry(lambda: self.store.merge(key, partial), f"merge {key}", policy)
        except StoreUnavailableError as exc:
            return self._accept_offline(key, "merge", partial, exc)
        if key in self._cache:
            self._cache[key] = apply_merge(self._cache[key], partial)
        return WriteResult(key, partial)

    async def set(self, key: str, document: Document, policy: Optional[RetryPolicy] = None) -> WriteResult:
        """Replace the document at ``key``."""
        try:
            await self._retry(lambda: self.store.set(key, document), f"set {key}", policy)
        except StoreUnavailableError as exc:
            return self._accept_offline(key, "set", document, exc)
        self._cache[key] = copy.deepcopy(document)
        return WriteResult(key, document)

    async def transaction(
        self, key: str, update: UpdateFn, policy: Optional[RetryPolicy] = None
    ) -> WriteResult:
        """Atomic read-modify-write. ``update`` may run more than once.

        Never queued while offline: the update has to run against the
        current remote document, so an unreachable store fails the call.

        Raises:
            SyncFailure: retries were exhausted or the store is unreachable
        """
        try:
            new_doc = await self._retry(
                lambda: self.store.transaction(key, update), f"transaction {key}", policy
            )
        except StoreUnavailableError as exc:
            self._report_offline(exc)
            raise SyncFailure(f"transaction {key}", 1, exc) from exc
        self._cache[key] = copy.deepcopy(new_doc)
        return WriteResult(key, new_doc)

    def subscribe(
        self,
        key: str,
        on_change: ChangeHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        """Deliver the document at ``key`` now and on every change.

        Must be called from a running event loop.
        """
        subscription = Subscription(self, key, on_change, on_error)
        subscription.start()
        return subscription

    async def replay_pending(self) -> int:
        """Push writes queued while offline, oldest first.

        Stops at the first failure so ordering is preserved. Returns the
        number of writes replayed.
        """
        if self.queue is None:
            return 0
        replayed = 0
        for write in self.queue.drain():
            try:
                if write.op == "merge":
                    await with_timeout(self.store.merge(write.key, write.data), self.policy.timeout)
                else:
                    await with_timeout(self.store.set(write.key, write.data), self.policy.timeout)
            except (StoreUnavailableError, *TRANSIENT_ERRORS) as exc:
                self.queue.increment_retry([write.write_id])
                logger.info("Replay of queued write %s stopped: %s", write.write_id, exc)
                break
            self.queue.mark_synced([write.write_id])
            replayed += 1
        if replayed:
            logger.info("Replayed %d queued write(s)", replayed)
            self.monitor.report(True)
        return replayed

    # ── Offline fallback ──────────────────────────────────────────

    def _report_offline(self, exc: BaseException) -> None:
        logger.info("Remote store unavailable: %s", exc)
        self.monitor.report_offline(str(exc))

    def _accept_offline(self, key: str, op: str, data: Document, exc: BaseException) -> WriteResult:
        self._report_offline(exc)
        if op == "merge":
            self._cache[key] = apply_merge(self._cache.get(key), data)
        else:
            self._cache[key] = copy.deepcopy(data)
        if self.queue is not None:
            self.queue.enqueue(key, op, data)
        else:
            logger.debug("No offline queue configured; %s to %s kept in memory only", op, key)
        return WriteResult(key, data, degraded=True)


class Subscription:
    """Resumable watch on one document key.

    Transport drops and transient errors are retried with backoff; while
    the store is unreachable the last cached snapshot is delivered once.
    """

    def __init__(
        self,
        client: SyncClient,
        key: str,
        on_change: ChangeHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self.key = key
        self._client = client
        self._on_change = on_change
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.resubscribe_count = 0

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"subscription:{self.key}")

    async def close(self) -> None:
        self._closed = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        client = self._client
        attempt = 0
        served_cache = False
        while not self._closed:
            try:
                first = True
                async with aclosing(client.store.watch(self.key)) as stream:
                    async for data in stream:
                        if first:
                            first = False
                            attempt = 0
                            served_cache = False
                            await client.replay_pending()
                        client._cache[self.key] = copy.deepcopy(data)
                        client.monitor.report(True)
                        self._deliver(data)
                raise TransientStoreError(f"watch stream for {self.key} ended")
            except StoreUnavailableError as exc:
                client._report_offline(exc)
                if not served_cache and self.key in client._cache:
                    served_cache = True
                    self._deliver(client.cached(self.key))
                self._notify_error(exc)
                delay = client.policy.max_delay
            except TRANSIENT_ERRORS as exc:
                client.monitor.report(False, str(exc))
                self._notify_error(exc)
                delay = client.policy.jittered_delay(attempt)
                attempt += 1
            if self._closed:
                break
            self.resubscribe_count += 1
            logger.debug("Resubscribing to %s in %.2fs", self.key, delay)
            await client._sleep(delay)

    def _deliver(self, data: Optional[Document]) -> None:
        try:
            self._on_change(data)
        except Exception:
            logger.exception("Change handler for %s failed", self.key)

    def _notify_error(self, exc: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("Error handler for %s failed", self.key)
