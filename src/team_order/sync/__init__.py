"""
Sync layer for team-order sessions.

Provides resilient access to the shared remote document store via:
- Connection monitor (process-wide health state with listeners)
- Retry / timeout primitives and resumable subscriptions
- Offline fallback with a persistent pending-write queue
- In-process and HTTP/WebSocket store transports

The HTTP transport pulls in httpx and websockets, so it is lazily imported
via __getattr__.
"""

from .config import SyncConfig
from .connection import ConnectionMonitor, ConnectionState, get_monitor, reset_monitor
from .primitives import (
    RetryPolicy,
    Snapshot,
    Subscription,
    SyncClient,
    SyncFailure,
    SyncTimeout,
    WriteResult,
    with_retry,
    with_timeout,
)
from .queue import OfflineQueue, PendingWrite
from .store import (
    DocumentStore,
    MemoryDocumentStore,
    StoreError,
    StoreUnavailableError,
    TransactionAborted,
    TransientStoreError,
    apply_merge,
)

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "HttpDocumentStore": (".http_store", "HttpDocumentStore"),
    "VersionConflict": (".http_store", "VersionConflict"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_path, attr = _LAZY_IMPORTS[name]
        import importlib

        mod = importlib.import_module(module_path, __name__)
        return getattr(mod, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ConnectionMonitor",
    "ConnectionState",
    "DocumentStore",
    "HttpDocumentStore",
    "MemoryDocumentStore",
    "OfflineQueue",
    "PendingWrite",
    "RetryPolicy",
    "Snapshot",
    "StoreError",
    "StoreUnavailableError",
    "Subscription",
    "SyncClient",
    "SyncConfig",
    "SyncFailure",
    "SyncTimeout",
    "TransactionAborted",
    "TransientStoreError",
    "VersionConflict",
    "WriteResult",
    "apply_merge",
    "get_monitor",
    "reset_monitor",
    "with_retry",
    "with_timeout",
]
