"""Tests for the historical order repository."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from team_order.session.errors import DocumentFormatError
from team_order.session.history import HistoryRepository, prepend_order_id
from team_order.session.models import (
    HISTORY_INDEX_KEY,
    HistoricalOrder,
    Participant,
    ParticipantOrder,
)
from team_order.sync.primitives import SyncFailure

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_order(order_id, total="100"):
    return HistoricalOrder(
        order_id=order_id,
        order_date=NOW,
        created_at=NOW,
        completed_at=NOW,
        participants=(Participant("a", "Alice"),),
        participant_orders={"a": ParticipantOrder("Alice")},
        selected_restaurant_id=1,
        selected_drink_shop_id=None,
        total_amount=Decimal(total),
    )


class TestPrependOrderId:
    def test_newest_first(self):
        assert prepend_order_id({"order_ids": ["o-1"]}, "o-2") == {"order_ids": ["o-2", "o-1"]}

    def test_missing_index(self):
        assert prepend_order_id(None, "o-1") == {"order_ids": ["o-1"]}

    def test_no_duplicates(self):
        assert prepend_order_id({"order_ids": ["o-2", "o-1"]}, "o-1") == {"order_ids": ["o-1", "o-2"]}


class TestHistoryRepository:
    @pytest.mark.asyncio
    async def test_record_writes_snapshot_and_index(self, sync_client, store):
        repo = HistoryRepository(sync_client)

        result = await repo.record(make_order("o-1"))

        assert result.degraded is False
        assert store.peek("historical_orders/o-1")["total_amount"] == 100
        assert store.peek(HISTORY_INDEX_KEY) == {"order_ids": ["o-1"]}

    @pytest.mark.asyncio
    async def test_record_is_repeatable(self, sync_client, store):
        repo = HistoryRepository(sync_client)
        await repo.record(make_order("o-1"))
        await repo.record(make_order("o-1"))
        assert store.peek(HISTORY_INDEX_KEY) == {"order_ids": ["o-1"]}

    @pytest.mark.asyncio
    async def test_recent_newest_first_with_limit(self, sync_client):
        repo = HistoryRepository(sync_client)
        for n in range(3):
            await repo.record(make_order(f"o-{n}", total=str(n)))

        recent = await repo.recent(limit=2)

        assert [o.order_id for o in recent] == ["o-2", "o-1"]
        assert recent[0].total_amount == Decimal("2")

    @pytest.mark.asyncio
    async def test_empty_history(self, sync_client):
        repo = HistoryRepository(sync_client)
        assert await repo.order_ids() == []
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_recent_skips_missing_orders(self, sync_client, store):
        await store.set(HISTORY_INDEX_KEY, {"order_ids": ["gone", "o-1"]})
        await store.set("historical_orders/o-1", make_order("o-1").to_dict())

        recent = await HistoryRepository(sync_client).recent()

        assert [o.order_id for o in recent] == ["o-1"]

    @pytest.mark.asyncio
    async def test_malformed_order(self, sync_client, store):
        await store.set("historical_orders/bad", {"order_id": "bad"})
        with pytest.raises(DocumentFormatError):
            await HistoryRepository(sync_client).get("bad")

    @pytest.mark.asyncio
    async def test_record_offline_fails_on_index(self, sync_client, store, temp_queue):
        repo = HistoryRepository(sync_client)
        store.available = False

        with pytest.raises(SyncFailure):
            await repo.record(make_order("o-1"))
        assert temp_queue.size() == 1

        store.available = True
        await repo.record(make_order("o-1"))
        assert store.peek(HISTORY_INDEX_KEY) == {"order_ids": ["o-1"]}
