"""Process-wide connection health tracking.

The monitor holds a single ``ConnectionState`` and notifies subscribed
listeners whenever it changes. It performs no I/O: the sync primitives
report the outcome of every remote attempt here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Consecutive failures tolerated before the user-visible status flips.
DISCONNECT_THRESHOLD = 1

ConnectionListener = Callable[["ConnectionState"], None]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of remote store health."""

    is_connected: bool = False
    last_error: Optional[str] = None
    retry_count: int = 0
    last_success_at: Optional[datetime] = None
    is_offline: bool = False

    @property
    def label(self) -> str:
        if self.is_offline:
            return "Offline"
        if self.is_connected:
            return "Connected"
        if self.retry_count > 0:
            return "Reconnecting"
        return "Connecting"

    def to_dict(self) -> dict:
        return {
            "is_connected": self.is_connected,
            "last_error": self.last_error,
            "retry_count": self.retry_count,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "is_offline": self.is_offline,
        }


class ConnectionMonitor:
    """Observable holder of the process-wide ``ConnectionState``."""

    def __init__(self, clock: Callable[[], datetime] = _now_utc) -> None:
        self._state = ConnectionState()
        self._listeners: list[ConnectionListener] = []
        self._clock = clock

    @property
    def state(self) -> ConnectionState:
        return self._state

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def report(self, success: bool, error: Optional[str] = None) -> None:
        """Record the outcome of one remote operation attempt."""
        if success:
            new_state = ConnectionState(
                is_connected=True,
                last_error=None,
                retry_count=0,
                last_success_at=self._clock(),
                is_offline=False,
            )
        else:
            retry_count = self._state.retry_count + 1
            new_state = replace(
                self._state,
                retry_count=retry_count,
                last_error=error or "unknown error",
                is_connected=self._state.is_connected and retry_count <= DISCONNECT_THRESHOLD,
            )
        self._set(new_state)

    def report_offline(self, error: Optional[str] = None) -> None:
        """Record that the remote store is entirely unreachable."""
        self._set(
            replace(
                self._state,
                is_connected=False,
                is_offline=True,
                last_error=error or "remote store unavailable",
            )
        )

    def _set(self, new_state: ConnectionState) -> None:
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Connection listener %r failed", listener)


# ── Singleton accessor ────────────────────────────────────────────

_monitor: ConnectionMonitor | None = None


def get_monitor() -> ConnectionMonitor:
    """Return the process-wide monitor, creating it on first use."""
    global _monitor
    if _monitor is None:
        _monitor = ConnectionMonitor()
    return _monitor


def reset_monitor() -> None:
    """Reset the singleton (for testing only)."""
    global _monitor
    _monitor = None
