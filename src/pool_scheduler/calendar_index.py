"""
Day-bucket projection of appointments for month/week/day views.
"""

import datetime
from collections.abc import Iterable

from pool_scheduler.models import Appointment
from pool_scheduler.timewindow import CalendarViewWindow


def _order_key(appointment: Appointment):
    # Untimed appointments first, then by time, id breaks ties.
    return (
        appointment.time is not None,
        appointment.time or datetime.time.min,
        appointment.id,
    )


def index(
    appointments: Iterable[Appointment],
    window: CalendarViewWindow,
) -> dict[datetime.date, list[Appointment]]:
    """
    Bucket ``appointments`` by day for ``window``.

    The result has one key per day of the window, in calendar order, so views
    can render empty days.  Appointments dated outside the window are dropped.
    """
    buckets: dict[datetime.date, list[Appointment]] = {day: [] for day in window.days()}
    for appointment in appointments:
        bucket = buckets.get(appointment.date)
        if bucket is not None:
            bucket.append(appointment)
    for bucket in buckets.values():
        bucket.sort(key=_order_key)
    return buckets


def counts(buckets: dict[datetime.date, list[Appointment]]) -> dict[datetime.date, int]:
    """Number of appointments per day, for compact month cells."""
    return {day: len(items) for day, items in buckets.items()}
