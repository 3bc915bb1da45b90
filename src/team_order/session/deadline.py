"""Order deadline parsing and the local deadline timer."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import ValidationError
from .models import now_utc

logger = logging.getLogger(__name__)

_CLOCK_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")

Clock = Callable[[], datetime]
ReachedCallback = Callable[[], Union[Awaitable[Any], Any]]


def parse_deadline(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a deadline into an aware UTC datetime.

    Accepts a ``datetime``, an ISO 8601 string, or ``"HH:MM"`` local
    wall-clock time. A wall-clock time already past today means tomorrow.
    ``None`` or an empty string clears the deadline.

    Raises:
        ValidationError: unrecognized value
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.astimezone()
        return value.astimezone(timezone.utc)
    if not isinstance(value, str):
        raise ValidationError(f"Invalid deadline {value!r}")

    text = value.strip()
    if not text:
        return None

    match = _CLOCK_TIME.match(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise ValidationError(f"Invalid deadline time {text!r}")
        local_now = (now or now_utc()).astimezone()
        candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid deadline {text!r}; use HH:MM or ISO 8601") from exc
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone.utc)


class DeadlineWatcher:
    """Polls the clock and calls ``on_reached`` exactly once at the deadline.

    One watcher per deadline value; the controller replaces it when the
    document's deadline changes.
    """

    def __init__(
        self,
        deadline: datetime,
        on_reached: ReachedCallback,
        clock: Clock = now_utc,
        interval: float = 1.0,
    ) -> None:
        self.deadline = deadline
        self._on_reached = on_reached
        self._clock = clock
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self.fired = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running or self.fired:
            return
        self._task = asyncio.create_task(self._run(), name="deadline-watcher")

    def cancel(self) -> None:
        """Stop polling without waiting; usable from synchronous callbacks."""
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            remaining = (self.deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._interval, remaining))

        self.fired = True
        logger.info("Order deadline %s reached", self.deadline.isoformat())
        try:
            result = self._on_reached()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Deadline callback failed")
