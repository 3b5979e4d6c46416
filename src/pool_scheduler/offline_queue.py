"""
SQLite persistence for service records captured while offline.
"""

import datetime
import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable
from pathlib import Path

from pool_scheduler.models import DeliveryState
from pool_scheduler.models import QueuedServiceRecord
from pool_scheduler.models import SchedulerError


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def open_private_db(db_path: Path) -> sqlite3.Connection:
    """Open (creating if needed) a database file readable only by its owner."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row  # Enable column access by name
    os.chmod(db_path, 0o600)
    return conn


class OfflineQueue:
    """
    Durable, append-only queue of pending service-record submissions.

    Every public operation runs under one lock and commits before returning,
    so a record enqueued while a sync is draining cannot corrupt the file.
    """

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], datetime.datetime] = _utc_now,
    ):
        self.db_path = db_path
        self.clock = clock
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the queue database."""
        self.conn = open_private_db(self.db_path)
        self._init_schema()

    def _init_schema(self):
        """Create the queue table if it doesn't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS service_record_queue (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                payload TEXT NOT NULL,
                queued_at TEXT NOT NULL,
                state TEXT NOT NULL,
                failure_reason TEXT,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_attempt_at INTEGER
            )
        """)
        self.conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise SchedulerError("Offline queue is not connected")
        return self.conn

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> QueuedServiceRecord:
        return QueuedServiceRecord(
            id=row["id"],
            payload=json.loads(row["payload"]),
            queued_at=datetime.datetime.fromisoformat(row["queued_at"]),
            state=DeliveryState(row["state"]),
            failure_reason=row["failure_reason"],
            attempts=row["attempts"],
        )

    # ------------------------------------------------------------------ #
    # Queue operations                                                     #
    # ------------------------------------------------------------------ #

    def enqueue(self, payload: dict, record_id: str | None = None) -> QueuedServiceRecord:
        """Durably store a new pending record and return it."""
        record = QueuedServiceRecord(
            id=record_id or str(uuid.uuid4()),
            payload=dict(payload),
            queued_at=self.clock(),
            state=DeliveryState.PENDING,
        )
        encoded = json.dumps(record.payload, sort_keys=True)
        with self._lock:
            conn = self._require_conn()
            conn.execute(
                "INSERT INTO service_record_queue (id, payload, queued_at, state) "
                "VALUES (?, ?, ?, ?)",
                (record.id, encoded, record.queued_at.isoformat(), record.state.value),
            )
            conn.commit()
        self.logger.debug(f"Queued service record {record.id}")
        return record

    def list(self) -> list[QueuedServiceRecord]:
        """All queued records, oldest first."""
        with self._lock:
            cursor = self._require_conn().execute(
                "SELECT * FROM service_record_queue ORDER BY queued_at, seq"
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def get(self, record_id: str) -> QueuedServiceRecord | None:
        with self._lock:
            cursor = self._require_conn().execute(
                "SELECT * FROM service_record_queue WHERE id = ? LIMIT 1", (record_id,)
            )
            row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    def remove(self, record_id: str):
        """Delete a record; removing an absent id is a no-op."""
        with self._lock:
            conn = self._require_conn()
            conn.execute("DELETE FROM service_record_queue WHERE id = ?", (record_id,))
            conn.commit()

    def mark_failed(self, record_id: str, reason: str):
        """Record a failed delivery attempt; the entry stays queued."""
        with self._lock:
            conn = self._require_conn()
            conn.execute(
                "UPDATE service_record_queue "
                "SET state = ?, failure_reason = ?, attempts = attempts + 1, last_attempt_at = ? "
                "WHERE id = ?",
                (DeliveryState.FAILED.value, reason, int(time.time()), record_id),
            )
            conn.commit()

    def pending_count(self) -> int:
        with self._lock:
            cursor = self._require_conn().execute("SELECT COUNT(*) FROM service_record_queue")
            return cursor.fetchone()[0]

    def clear(self):
        """Remove every entry (reset/test paths only)."""
        with self._lock:
            conn = self._require_conn()
            conn.execute("DELETE FROM service_record_queue")
            conn.commit()

    def close(self):
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
