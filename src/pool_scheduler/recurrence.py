"""
Recurrence expansion for appointment series.

Occurrence *n* is always computed from the series anchor rather than from the
previous occurrence, so a monthly series anchored on the 31st lands on the
last day of shorter months and returns to the 31st afterwards.  The target
day of month is ``series.anchor_day`` when set, so a series that starts on a
clamped day (a split tail) keeps the original cadence.
"""

import datetime
from collections.abc import Iterator

from dateutil.relativedelta import relativedelta

from pool_scheduler.models import Frequency
from pool_scheduler.models import RecurrenceSeries

_STEP_DAYS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}


def occurrence_at(series: RecurrenceSeries, n: int) -> datetime.date:
    """Return the n-th (0-based) occurrence of ``series``, ignoring its end date."""
    if n < 0:
        raise ValueError(f"occurrence index must be non-negative, got {n}")
    frequency = Frequency(series.frequency)
    if frequency is Frequency.MONTHLY:
        # relativedelta clamps an absolute day past the month end to the last day.
        return series.start + relativedelta(months=n, day=series.anchor_day or series.start.day)
    return series.start + datetime.timedelta(days=_STEP_DAYS[frequency] * n)


def _first_index_on_or_after(series: RecurrenceSeries, day: datetime.date) -> int:
    if day <= series.start:
        return 0
    frequency = Frequency(series.frequency)
    if frequency is Frequency.MONTHLY:
        n = (day.year - series.start.year) * 12 + (day.month - series.start.month)
        if occurrence_at(series, n) < day:
            n += 1
        return n
    step = _STEP_DAYS[frequency]
    return -(-(day - series.start).days // step)


def iter_occurrences(
    series: RecurrenceSeries,
    range_start: datetime.date,
    range_end: datetime.date,
) -> Iterator[datetime.date]:
    """Lazily yield the occurrences of ``series`` inside ``[range_start, range_end]``."""
    if range_end < range_start:
        raise ValueError(f"range end {range_end} is before start {range_start}")

    stop = range_end if series.end is None else min(series.end, range_end)
    n = _first_index_on_or_after(series, max(series.start, range_start))
    while True:
        day = occurrence_at(series, n)
        if day > stop:
            return
        yield day
        n += 1


def expand(
    series: RecurrenceSeries,
    range_start: datetime.date,
    range_end: datetime.date,
) -> list[datetime.date]:
    """Ordered occurrence days of ``series`` within the closed range."""
    return list(iter_occurrences(series, range_start, range_end))


def occurrence_index(series: RecurrenceSeries, day: datetime.date) -> int | None:
    """Ordinal of ``day`` within the series, or None when it is not an occurrence."""
    if day < series.start or (series.end is not None and day > series.end):
        return None
    n = _first_index_on_or_after(series, day)
    return n if occurrence_at(series, n) == day else None


def is_occurrence(series: RecurrenceSeries, day: datetime.date) -> bool:
    return occurrence_index(series, day) is not None


def next_occurrence(series: RecurrenceSeries, after: datetime.date) -> datetime.date | None:
    """First occurrence strictly after ``after``, or None once the series has ended."""
    day = occurrence_at(series, _first_index_on_or_after(series, after + datetime.timedelta(days=1)))
    if series.end is not None and day > series.end:
        return None
    return day
