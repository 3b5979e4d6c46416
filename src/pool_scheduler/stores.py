"""
Interfaces of the remote collaborators the scheduling core talks to.
"""

import datetime
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass

from pool_scheduler.models import Appointment
from pool_scheduler.models import RecurrenceSeries
from pool_scheduler.models import SyncReport


@dataclass
class UpsertResult:
    committed: bool


class AppointmentStore(ABC):
    """Remote appointment and series storage."""

    @abstractmethod
    def list_appointments(self, start: datetime.date, end: datetime.date) -> list[Appointment]:
        """Appointments dated within ``[start, end]``, ordered by (date, time)."""

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Return one appointment, or None if it does not exist."""

    @abstractmethod
    def create_appointment(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment and return the stored version."""

    @abstractmethod
    def update_appointment(self, appointment_id: str, fields: dict) -> None:
        """Apply a partial update (Appointment attribute names as keys)."""

    @abstractmethod
    def delete_appointment(self, appointment_id: str) -> None:
        """Delete an appointment."""

    @abstractmethod
    def get_series(self, series_id: str) -> RecurrenceSeries | None:
        """Return a series with the ids of the appointments it currently owns."""

    @abstractmethod
    def list_series_appointments(self, series_id: str) -> list[Appointment]:
        """Materialized appointments owned by a series, ordered by date."""

    @abstractmethod
    def create_series(self, series: RecurrenceSeries) -> RecurrenceSeries:
        """Persist a new series record (appointments are created separately)."""

    @abstractmethod
    def update_series_end_date(self, series_id: str, end: datetime.date | None) -> None:
        """Move the end boundary of a series."""

    @abstractmethod
    def update_series_materialized_through(self, series_id: str, day: datetime.date) -> None:
        """Record the latest occurrence day created for a series."""

    @abstractmethod
    def delete_series(self, series_id: str) -> None:
        """Delete a series record."""


class ServiceRecordStore(ABC):
    """Remote service-record storage."""

    @abstractmethod
    def upsert_service_record(self, client_id: str, payload: dict, timeout: float) -> UpsertResult:
        """
        Write a service record keyed by its client-generated id.

        Must be idempotent on ``client_id``: replaying the same id never
        creates a second server-side record.

        Raises:
            RemoteUnavailable: transient failure, including exceeding ``timeout``
            RemoteRejected: the store refused the payload
        """


class NotificationSink(ABC):
    """Receives sync reports for user display."""

    @abstractmethod
    def notify(self, report: SyncReport) -> None:
        """Show the report; failures here never affect queue state."""
