"""
Pure data models and errors; no sqlite or HTTP imports.
"""

import datetime
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path

DEFAULT_QUEUE_DB = Path.home() / ".local/share/pool-scheduler-queue.db"
DEFAULT_CONFIG = Path.home() / ".config/pool-scheduler.conf"

# America/Phoenix stays on MST (UTC-7) all year.
DEFAULT_UTC_OFFSET_MINUTES = -7 * 60
DEFAULT_UPSERT_TIMEOUT = 15.0
DEFAULT_MAX_OCCURRENCES = 52


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SchedulerError(Exception):
    """Base exception for scheduling and sync errors."""

    pass


class NotFound(SchedulerError):
    """The mutation target (series, occurrence or appointment) does not exist."""


class InvalidScope(SchedulerError):
    """The requested scope/action does not apply to this appointment."""


class RemoteError(SchedulerError):
    """A call to the remote store failed."""


class RemoteUnavailable(RemoteError):
    """Transient failure (network, timeout, server error); safe to retry."""


class RemoteRejected(RemoteError):
    """The remote store refused the payload (validation, permissions)."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ViewKind(str, Enum):
    MONTH = "month"
    WEEK = "week"
    DAY = "day"


class Scope(str, Enum):
    SINGLE = "single"
    FUTURE = "future"
    ALL = "all"


class Action(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


class DeliveryState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


class SyncState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    PARTIALLY_FAILED = "partially_failed"


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


@dataclass
class Appointment:
    """One concrete appointment; standalone unless ``series_id`` is set."""

    id: str
    date: datetime.date
    time: datetime.time | None = None
    customer_id: str | None = None
    service_type: str = ""
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    duration_minutes: int | None = None
    notes: str | None = None
    series_id: str | None = None
    series_position: int | None = None
    recurrence_end_date: datetime.date | None = None

    @property
    def is_recurring(self) -> bool:
        return self.series_id is not None

    def to_row(self) -> dict:
        """Serialize to the remote ``appointments`` row shape."""
        return {
            "id": self.id,
            "appointment_date": self.date.isoformat(),
            "appointment_time": self.time.isoformat() if self.time else None,
            "customer_id": self.customer_id,
            "service_type": self.service_type,
            "status": self.status.value,
            "duration_minutes": self.duration_minutes,
            "notes": self.notes,
            "series_id": self.series_id,
            "series_position": self.series_position,
            "recurrence_end_date": (
                self.recurrence_end_date.isoformat() if self.recurrence_end_date else None
            ),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Appointment":
        """Build an Appointment from a remote ``appointments`` row."""
        raw_time = row.get("appointment_time")
        raw_end = row.get("recurrence_end_date")
        return cls(
            id=str(row["id"]),
            date=datetime.date.fromisoformat(row["appointment_date"]),
            time=datetime.time.fromisoformat(raw_time) if raw_time else None,
            customer_id=row.get("customer_id"),
            service_type=row.get("service_type") or "",
            status=AppointmentStatus(row.get("status") or AppointmentStatus.SCHEDULED.value),
            duration_minutes=row.get("duration_minutes"),
            notes=row.get("notes"),
            series_id=row.get("series_id"),
            series_position=row.get("series_position"),
            recurrence_end_date=datetime.date.fromisoformat(raw_end) if raw_end else None,
        )


@dataclass
class RecurrenceSeries:
    """
    A repeating appointment definition and the appointments it owns.

    ``anchor_day`` is the day of month monthly occurrences aim for (defaults to
    ``start.day``); a tail split off a series keeps the original's anchor.
    ``materialized_through`` is the latest occurrence day ever created for the
    series, whether or not that appointment still exists.
    """

    id: str
    frequency: Frequency
    start: datetime.date
    end: datetime.date | None = None
    anchor_day: int | None = None
    materialized_through: datetime.date | None = None
    appointment_ids: list[str] = field(default_factory=list)


@dataclass
class MutationRequest:
    scope: Scope
    action: Action
    occurrence_day: datetime.date
    new_fields: dict = field(default_factory=dict)


@dataclass
class MutationResult:
    """What a scoped mutation changed in the store."""

    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    detached: list[str] = field(default_factory=list)
    new_series_id: str | None = None
    series_deleted: bool = False


# ---------------------------------------------------------------------------
# Offline queue and sync
# ---------------------------------------------------------------------------


@dataclass
class QueuedServiceRecord:
    """A service record waiting to be delivered to the remote store."""

    id: str
    payload: dict
    queued_at: datetime.datetime
    state: DeliveryState = DeliveryState.PENDING
    failure_reason: str | None = None
    attempts: int = 0


@dataclass
class SyncFailure:
    record_id: str
    reason: str
    kind: str  # 'unavailable', 'rejected' or 'unexpected'


@dataclass
class SyncReport:
    """Outcome of one drain of the offline queue."""

    committed: list[str] = field(default_factory=list)
    failed: list[SyncFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> SyncState:
        return SyncState.PARTIALLY_FAILED if self.failed else SyncState.IDLE

    @property
    def total(self) -> int:
        return len(self.committed) + len(self.failed)

    def summary(self) -> str:
        if not self.total:
            return "Nothing to sync"
        text = f"{len(self.committed)} record(s) synced"
        if self.failed:
            text += f", {len(self.failed)} failed"
        return text


@dataclass
class SchedulerConfig:
    """Configuration shared by the CLI commands."""

    queue_db_path: Path
    remote_url: str | None = None
    api_key: str | None = None
    utc_offset_minutes: int = DEFAULT_UTC_OFFSET_MINUTES
    upsert_timeout: float = DEFAULT_UPSERT_TIMEOUT
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES
    verbose: bool = False
