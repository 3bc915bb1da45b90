"""Remote document store contract and the in-process implementation.

A store holds JSON-compatible documents addressed by slash-separated keys
(``sessions/<id>``). It supports get / merge / set / transaction and a
``watch`` stream that yields the full document on every change, starting
with the current snapshot. ``None`` means the document does not exist.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, AsyncIterator, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

Document = dict[str, Any]
UpdateFn = Callable[[Optional[Document]], Optional[Document]]


class StoreError(Exception):
    """Base class for remote store failures."""


class TransientStoreError(StoreError):
    """A failure worth retrying (timeout, dropped connection, 5xx)."""


class StoreUnavailableError(StoreError):
    """The remote store cannot be reached at all."""


class TransactionAborted(Exception):
    """Raised by a transaction update function to abandon the write."""


class DocumentStore(Protocol):
    """Minimal key-addressed document store used by the sync layer."""

    async def get(self, key: str) -> Optional[Document]: ...

    async def merge(self, key: str, partial: Document) -> None: ...

    async def set(self, key: str, document: Document) -> None: ...

    async def transaction(self, key: str, update: UpdateFn) -> Optional[Document]: ...

    def watch(self, key: str) -> AsyncIterator[Optional[Document]]: ...


def apply_merge(document: Optional[Document], partial: Document) -> Document:
    """Shallow-merge ``partial`` into ``document`` and return the result.

    Top-level keys replace whole values. A dotted key such as
    ``participant_orders.m-1`` replaces a single entry of a map field and
    leaves sibling entries untouched. Neither argument is mutated.
    """
    result: Document = copy.deepcopy(document) if document else {}
    for raw_key, value in partial.items():
        path = raw_key.split(".")
        target = result
        for part in path[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[path[-1]] = copy.deepcopy(value)
    return result


_DROP = object()


class MemoryDocumentStore:
    """In-process ``DocumentStore``.

    Used as the local backend for single-machine sessions and as the test
    double for the sync layer. ``available`` can be toggled to simulate a
    store that is entirely unreachable, and ``drop_watchers`` simulates a
    transport drop on every open ``watch`` stream.
    """

    def __init__(self, documents: Optional[dict[str, Document]] = None) -> None:
        self._documents: dict[str, Document] = copy.deepcopy(documents or {})
        self._watchers: dict[str, list[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("memory store marked unavailable")

    def peek(self, key: str) -> Optional[Document]:
        """Synchronous read for tests and diagnostics."""
        doc = self._documents.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def get(self, key: str) -> Optional[Document]:
        self._check_available()
        return self.peek(key)

    async def merge(self, key: str, partial: Document) -> None:
        self._check_available()
        async with self._lock:
            self._documents[key] = apply_merge(self._documents.get(key), partial)
            self._notify(key)

    async def set(self, key: str, document: Document) -> None:
        self._check_available()
        async with self._lock:
            self._documents[key] = copy.deepcopy(document)
            self._notify(key)

    async def transaction(self, key: str, update: UpdateFn) -> Optional[Document]:
        self._check_available()
        async with self._lock:
            new_doc = update(self.peek(key))
            if new_doc is None:
                self._documents.pop(key, None)
            else:
                self._documents[key] = copy.deepcopy(new_doc)
            self._notify(key)
            return copy.deepcopy(new_doc)

    async def watch(self, key: str) -> AsyncIterator[Optional[Document]]:
        self._check_available()
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(key, []).append(queue)
        try:
            yield self.peek(key)
            while True:
                item = await queue.get()
                if item is _DROP:
                    raise TransientStoreError(f"watch stream for {key} dropped")
                yield item
        finally:
            watchers = self._watchers.get(key, [])
            if queue in watchers:
                watchers.remove(queue)

    def drop_watchers(self) -> None:
        """Interrupt every open watch stream."""
        for queues in self._watchers.values():
            for queue in queues:
                queue.put_nowait(_DROP)

    def _notify(self, key: str) -> None:
        snapshot = self.peek(key)
        for queue in self._watchers.get(key, []):
            queue.put_nowait(copy.deepcopy(snapshot))
