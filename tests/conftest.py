"""Shared fixtures for team-order tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Iterator

import pytest

from team_order.sync.connection import ConnectionMonitor, reset_monitor
from team_order.sync.primitives import RetryPolicy, SyncClient
from team_order.sync.queue import OfflineQueue
from team_order.sync.store import MemoryDocumentStore


@pytest.fixture(autouse=True)
def team_order_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point TEAM_ORDER_HOME at a temp dir so tests never touch ~/.team-order/."""
    home = tmp_path / "home"
    monkeypatch.setenv("TEAM_ORDER_HOME", str(home))
    reset_monitor()
    yield home
    reset_monitor()


@pytest.fixture
def monitor() -> ConnectionMonitor:
    return ConnectionMonitor()


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with millisecond delays and no jitter."""
    return RetryPolicy(max_attempts=4, base_delay=0.001, max_delay=0.01, jitter=0.0, timeout=1.0)


@pytest.fixture
def temp_queue(tmp_path: Path) -> OfflineQueue:
    """Temporary SQLite queue for testing."""
    return OfflineQueue(db_path=tmp_path / "test_queue.db")


@pytest.fixture
def sync_client(
    store: MemoryDocumentStore,
    monitor: ConnectionMonitor,
    fast_policy: RetryPolicy,
    temp_queue: OfflineQueue,
) -> SyncClient:
    return SyncClient(store, monitor=monitor, policy=fast_policy, queue=temp_queue)


@pytest.fixture
def eventually() -> Callable:
    """Await until a predicate holds, failing after ``timeout`` seconds."""

    async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met within %.1fs" % timeout)
            await asyncio.sleep(0.005)

    return _eventually
