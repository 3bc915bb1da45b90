"""Tests for retry, timeout and backoff primitives."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from team_order.sync.connection import ConnectionMonitor
from team_order.sync.primitives import (
    RetryPolicy,
    SyncFailure,
    SyncTimeout,
    with_retry,
    with_timeout,
)
from team_order.sync.store import StoreUnavailableError, TransientStoreError


class TestRetryPolicy:
    """Test the exponential backoff formula: min(base * 2^attempt, max)"""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 4
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0
        assert policy.timeout == 15.0

    def test_backoff_sequence(self):
        policy = RetryPolicy()
        assert [policy.backoff_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_backoff_capped(self):
        assert RetryPolicy().backoff_delay(20) == 10.0

    def test_jitter_bounds(self):
        policy = RetryPolicy(jitter=1.0)
        for _ in range(50):
            delay = policy.jittered_delay(1)
            assert 2.0 <= delay <= 3.0

    def test_jitter_uses_uniform(self):
        with patch("team_order.sync.primitives.random.uniform", return_value=0.25) as uniform:
            assert RetryPolicy(jitter=0.5).jittered_delay(0) == 1.25
        uniform.assert_called_once_with(0, 0.5)

    def test_scaled_multiplies_timeout_only(self):
        scaled = RetryPolicy().scaled(2)
        assert scaled.timeout == 30.0
        assert scaled.max_attempts == 4

    def test_from_config(self, team_order_home):
        from team_order.sync.config import SyncConfig

        team_order_home.mkdir(parents=True, exist_ok=True)
        (team_order_home / "config.toml").write_text("[sync]\nmax_attempts = 2\ntimeout_seconds = 3\n")
        policy = RetryPolicy.from_config(SyncConfig())
        assert policy.max_attempts == 2
        assert policy.timeout == 3.0
        assert policy.base_delay == 1.0


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def fast():
            return 42

        assert await with_timeout(fast(), 1.0) == 42

    @pytest.mark.asyncio
    async def test_expiry_raises_sync_timeout(self):
        with pytest.raises(SyncTimeout):
            await with_timeout(asyncio.sleep(1), 0.01)

    def test_sync_timeout_is_transient(self):
        assert issubclass(SyncTimeout, TransientStoreError)


class TestWithRetry:
    """Test with_retry behaviour and monitor reporting"""

    @pytest.mark.asyncio
    async def test_three_failures_then_success(self):
        monitor = ConnectionMonitor()
        operation = AsyncMock(
            side_effect=[
                TransientStoreError("a"),
                TransientStoreError("b"),
                TransientStoreError("c"),
                "done",
            ]
        )
        sleep = AsyncMock()
        policy = RetryPolicy(jitter=0.0)

        result = await with_retry(operation, name="op", policy=policy, monitor=monitor, sleep=sleep)

        assert result == "done"
        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert monitor.state.retry_count == 0
        assert monitor.state.is_connected is True

    @pytest.mark.asyncio
    async def test_exhausted_raises_sync_failure(self):
        monitor = ConnectionMonitor()
        last = TransientStoreError("last")
        operation = AsyncMock(side_effect=[TransientStoreError("x")] * 3 + [last])

        with pytest.raises(SyncFailure) as exc_info:
            await with_retry(
                operation, name="write", policy=RetryPolicy(jitter=0.0), monitor=monitor, sleep=AsyncMock()
            )

        assert exc_info.value.attempts == 4
        assert exc_info.value.cause is last
        assert exc_info.value.operation == "write"
        assert monitor.state.retry_count == 4
        assert monitor.state.is_connected is False

    @pytest.mark.asyncio
    async def test_os_errors_are_retried(self):
        operation = AsyncMock(side_effect=[ConnectionResetError("reset"), "ok"])
        result = await with_retry(
            operation, policy=RetryPolicy(jitter=0.0), monitor=ConnectionMonitor(), sleep=AsyncMock()
        )
        assert result == "ok"

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        calls = 0

        async def slow_then_fast():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return "fast"

        policy = RetryPolicy(timeout=0.01, jitter=0.0, base_delay=0.001)
        assert await with_retry(slow_then_fast, policy=policy, monitor=ConnectionMonitor()) == "fast"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_unavailable_propagates_immediately(self):
        operation = AsyncMock(side_effect=StoreUnavailableError("down"))
        sleep = AsyncMock()

        with pytest.raises(StoreUnavailableError):
            await with_retry(operation, monitor=ConnectionMonitor(), sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_transient_error_propagates(self):
        operation = AsyncMock(side_effect=ValueError("bad payload"))
        with pytest.raises(ValueError):
            await with_retry(operation, monitor=ConnectionMonitor(), sleep=AsyncMock())
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_permission_errors_from_session_rules_are_not_retried(self):
        from team_order.session.errors import AdminRequiredError

        operation = AsyncMock(side_effect=AdminRequiredError("admins only"))
        sleep = AsyncMock()

        with pytest.raises(AdminRequiredError):
            await with_retry(operation, monitor=ConnectionMonitor(), sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()
        assert not issubclass(AdminRequiredError, OSError)
