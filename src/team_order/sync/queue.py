"""SQLite-backed queue of writes accepted while the remote store was offline."""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ulid import ULID

from .config import config_dir

logger = logging.getLogger(__name__)

WRITE_OPS = ("merge", "set")


def default_queue_db_path() -> Path:
    """Return ~/.team-order/pending.db (honours TEAM_ORDER_HOME)."""
    return config_dir() / "pending.db"


@dataclass(frozen=True)
class PendingWrite:
    """One queued write, replayed in FIFO order once the store is back."""

    write_id: str
    key: str
    op: str
    data: dict[str, Any]
    retry_count: int = 0


class OfflineQueue:
    """
    Persistent FIFO of pending document writes.

    Features:
    - Survives process restarts
    - FIFO ordering by timestamp, then insertion id
    - 10,000 write capacity limit
    """

    MAX_QUEUE_SIZE = 10000

    def __init__(self, db_path: Optional[Path] = None) -> None:
        if db_path is None:
            db_path = default_queue_db_path()

        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS pending_writes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    write_id TEXT UNIQUE NOT NULL,
                    doc_key TEXT NOT NULL,
                    op TEXT NOT NULL,
                    data TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    retry_count INTEGER DEFAULT 0
                )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_timestamp ON pending_writes(timestamp)')
            conn.commit()
        finally:
            conn.close()

    def enqueue(self, key: str, op: str, data: dict[str, Any]) -> Optional[str]:
        """
        Add a write to the queue.

        Returns:
            The generated write id, or None if the queue is full
        """
        if op not in WRITE_OPS:
            raise ValueError(f"Unsupported write op {op!r}")
        if self.size() >= self.MAX_QUEUE_SIZE:
            logger.warning("Offline queue full (%s writes); dropping write to %s", self.MAX_QUEUE_SIZE, key)
            return None

        write_id = str(ULID())
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                'INSERT INTO pending_writes (write_id, doc_key, op, data, timestamp) VALUES (?, ?, ?, ?, ?)',
                (write_id, key, op, json.dumps(data), datetime.now().timestamp()),
            )
            conn.commit()
        finally:
            conn.close()
        return write_id

    def drain(self, limit: int = 1000) -> list[PendingWrite]:
        """
        Return queued writes oldest first without removing them.

        Use mark_synced() after each write has been applied remotely.
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(
                'SELECT write_id, doc_key, op, data, retry_count FROM pending_writes '
                'ORDER BY timestamp ASC, id ASC LIMIT ?',
                (limit,),
            )
            return [
                PendingWrite(
                    write_id=write_id,
                    key=key,
                    op=op,
                    data=json.loads(data),
                    retry_count=retry_count,
                )
                for write_id, key, op, data, retry_count in cursor
            ]
        finally:
            conn.close()

    def mark_synced(self, write_ids: list[str]) -> None:
        """Remove writes that reached the remote store."""
        if not write_ids:
            return

        conn = sqlite3.connect(self.db_path)
        try:
            placeholders = ','.join('?' * len(write_ids))
            conn.execute(f'DELETE FROM pending_writes WHERE write_id IN ({placeholders})', write_ids)
            conn.commit()
        finally:
            conn.close()

    def increment_retry(self, write_ids: list[str]) -> None:
        """Bump the retry counter of writes that failed to replay."""
        if not write_ids:
            return

        conn = sqlite3.connect(self.db_path)
        try:
            placeholders = ','.join('?' * len(write_ids))
            conn.execute(
                f'UPDATE pending_writes SET retry_count = retry_count + 1 WHERE write_id IN ({placeholders})',
                write_ids,
            )
            conn.commit()
        finally:
            conn.close()

    def size(self) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("SELECT COUNT(*) FROM pending_writes").fetchone()
            if row is None:
                return 0
            return int(row[0])
        finally:
            conn.close()

    def clear(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('DELETE FROM pending_writes')
            conn.commit()
        finally:
            conn.close()
