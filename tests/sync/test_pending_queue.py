"""Tests for the SQLite offline write queue."""

import pytest

from team_order.sync.queue import OfflineQueue, default_queue_db_path


class TestOfflineQueue:
    def test_empty_queue(self, temp_queue):
        assert temp_queue.size() == 0
        assert temp_queue.drain() == []

    def test_fifo_order(self, temp_queue):
        for n in range(3):
            temp_queue.enqueue("sessions/s1", "merge", {"n": n})

        assert [w.data["n"] for w in temp_queue.drain()] == [0, 1, 2]

    def test_drain_does_not_remove(self, temp_queue):
        temp_queue.enqueue("k", "set", {"a": 1})
        temp_queue.drain()
        assert temp_queue.size() == 1

    def test_rejects_unknown_op(self, temp_queue):
        with pytest.raises(ValueError):
            temp_queue.enqueue("k", "delete", {})

    def test_mark_synced_removes_writes(self, temp_queue):
        first = temp_queue.enqueue("k", "merge", {"a": 1})
        temp_queue.enqueue("k", "merge", {"a": 2})

        temp_queue.mark_synced([first])

        remaining = temp_queue.drain()
        assert [w.data for w in remaining] == [{"a": 2}]

    def test_mark_synced_with_no_ids(self, temp_queue):
        temp_queue.enqueue("k", "merge", {"a": 1})
        temp_queue.mark_synced([])
        assert temp_queue.size() == 1

    def test_increment_retry(self, temp_queue):
        write_id = temp_queue.enqueue("k", "merge", {"a": 1})
        temp_queue.increment_retry([write_id])
        temp_queue.increment_retry([write_id])
        assert temp_queue.drain()[0].retry_count == 2

    def test_clear(self, temp_queue):
        temp_queue.enqueue("k", "merge", {"a": 1})
        temp_queue.clear()
        assert temp_queue.size() == 0

    def test_full_queue_drops_write(self, temp_queue, monkeypatch):
        monkeypatch.setattr(OfflineQueue, "MAX_QUEUE_SIZE", 1)
        assert temp_queue.enqueue("k", "merge", {"a": 1}) is not None
        assert temp_queue.enqueue("k", "merge", {"a": 2}) is None
        assert temp_queue.size() == 1

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "queue.db"
        OfflineQueue(db_path=path).enqueue("k", "set", {"a": 1})
        assert OfflineQueue(db_path=path).size() == 1

    def test_default_path_honours_home(self, team_order_home):
        assert default_queue_db_path() == team_order_home / "pending.db"
        queue = OfflineQueue()
        assert queue.db_path.exists()
