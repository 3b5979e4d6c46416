"""
Shared pytest fixtures and appointment helpers.
"""

import datetime

import pytest

from pool_scheduler.models import Appointment
from pool_scheduler.offline_queue import OfflineQueue
from pool_scheduler.series import SeriesMutator
from tests.fake_store import FakeAppointmentStore
from tests.fake_store import FakeServiceRecordStore


def make_appointment(
    appointment_id: str,
    day: datetime.date,
    time: datetime.time | None = datetime.time(9, 0),
    **fields,
) -> Appointment:
    """Return a standalone appointment with sensible defaults."""
    return Appointment(
        id=appointment_id,
        date=day,
        time=time,
        customer_id=fields.pop("customer_id", "cust-1"),
        service_type=fields.pop("service_type", "Weekly Cleaning"),
        **fields,
    )


class StepClock:
    """Deterministic clock: each call returns one second later than the last."""

    def __init__(self, start: datetime.datetime | None = None):
        self.now = start or datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)

    def __call__(self) -> datetime.datetime:
        current = self.now
        self.now += datetime.timedelta(seconds=1)
        return current


@pytest.fixture
def queue_db_path(tmp_path):
    return tmp_path / "queue.db"


@pytest.fixture
def offline_queue(queue_db_path):
    with OfflineQueue(queue_db_path, clock=StepClock()) as queue:
        yield queue


@pytest.fixture
def appointment_store():
    return FakeAppointmentStore()


@pytest.fixture
def record_store():
    return FakeServiceRecordStore()


@pytest.fixture
def mutator(appointment_store):
    return SeriesMutator(appointment_store)
