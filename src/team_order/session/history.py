"""Append-only history of finalized orders.

Each finalized session is written once to ``historical_orders/<id>``; the
``history/order_list`` index keeps ids newest first.
"""

from __future__ import annotations

import logging
from typing import Optional

from team_order.sync.primitives import RetryPolicy, SyncClient, WriteResult
from team_order.sync.store import Document

from .errors import DocumentFormatError, ValidationError
from .models import HISTORY_INDEX_KEY, HistoricalOrder, historical_order_key

logger = logging.getLogger(__name__)


def prepend_order_id(index: Optional[Document], order_id: str) -> Document:
    """Index update putting ``order_id`` first; an id is never listed twice."""
    existing = [oid for oid in (index or {}).get("order_ids") or () if oid != order_id]
    return {"order_ids": [order_id, *existing]}


class HistoryRepository:
    def __init__(self, sync: SyncClient) -> None:
        self._sync = sync

    async def record(self, order: HistoricalOrder, policy: Optional[RetryPolicy] = None) -> WriteResult:
        """Write the snapshot, then list it in the index.

        Safe to repeat: the snapshot write is a full replace and the index
        update deduplicates. The index update is a transaction, so an
        unreachable store raises ``SyncFailure`` rather than queueing it.
        """
        result = await self._sync.set(order.key, order.to_dict(), policy)
        await self._sync.transaction(
            HISTORY_INDEX_KEY,
            lambda current: prepend_order_id(current, order.order_id),
            policy,
        )
        logger.info("Recorded historical order %s", order.order_id)
        return result

    async def order_ids(self) -> list[str]:
        snapshot = await self._sync.read(HISTORY_INDEX_KEY)
        if not snapshot.exists:
            return []
        return [str(oid) for oid in snapshot.data.get("order_ids") or ()]

    async def get(self, order_id: str) -> Optional[HistoricalOrder]:
        snapshot = await self._sync.read(historical_order_key(order_id))
        if not snapshot.exists:
            return None
        try:
            return HistoricalOrder.from_dict(snapshot.data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise DocumentFormatError(f"Malformed historical order {order_id}: {exc}") from exc

    async def recent(self, limit: int = 10) -> list[HistoricalOrder]:
        orders: list[HistoricalOrder] = []
        for order_id in (await self.order_ids())[:limit]:
            order = await self.get(order_id)
            if order is None:
                logger.warning("History index lists missing order %s", order_id)
                continue
            orders.append(order)
        return orders
