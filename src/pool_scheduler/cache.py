"""
Per-day appointment cache so a technician's route stays viewable offline.
"""

import datetime
import json
import sqlite3
from pathlib import Path

from pool_scheduler.models import Appointment
from pool_scheduler.offline_queue import open_private_db


class DayCache:
    """Last successfully fetched appointment list for each day."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.conn = open_private_db(self.db_path)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS appointment_cache (
                day TEXT PRIMARY KEY,
                appointments TEXT NOT NULL,
                cached_at TEXT NOT NULL
            )
        """)
        self.conn.commit()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn:
            self.conn.close()
            self.conn = None

    def save(self, day: datetime.date, appointments: list[Appointment], cached_at: datetime.datetime):
        """Replace the cached list for ``day``."""
        rows = json.dumps([a.to_row() for a in appointments])
        self.conn.execute(
            "INSERT INTO appointment_cache (day, appointments, cached_at) VALUES (?, ?, ?) "
            "ON CONFLICT(day) DO UPDATE SET "
            "appointments = excluded.appointments, cached_at = excluded.cached_at",
            (day.isoformat(), rows, cached_at.isoformat()),
        )
        self.conn.commit()

    def load(self, day: datetime.date) -> tuple[list[Appointment], datetime.datetime] | None:
        """Return ``(appointments, cached_at)`` for ``day``, or None if never cached."""
        row = self.conn.execute(
            "SELECT appointments, cached_at FROM appointment_cache WHERE day = ?",
            (day.isoformat(),),
        ).fetchone()
        if row is None:
            return None
        appointments = [Appointment.from_row(r) for r in json.loads(row["appointments"])]
        return appointments, datetime.datetime.fromisoformat(row["cached_at"])
