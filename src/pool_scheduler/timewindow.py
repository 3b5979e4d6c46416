"""
Fixed-offset civil-day arithmetic and calendar view ranges.

Every other module works with ``datetime.date`` values; this is the only place
that turns instants into days.  The service runs in a single civil timezone
with a permanent UTC offset, so no DST handling is needed.
"""

import datetime
import re
from collections.abc import Iterator
from dataclasses import dataclass

from dateutil.relativedelta import relativedelta

from pool_scheduler.models import DEFAULT_UTC_OFFSET_MINUTES
from pool_scheduler.models import ViewKind

_TIME_12H_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


def _fixed_zone(utc_offset_minutes: int) -> datetime.timezone:
    return datetime.timezone(datetime.timedelta(minutes=utc_offset_minutes))


def day_identity(instant: datetime.datetime, utc_offset_minutes: int) -> datetime.date:
    """Return the civil day of ``instant`` at the given fixed UTC offset.

    Naive datetimes are interpreted as UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=datetime.timezone.utc)
    return instant.astimezone(_fixed_zone(utc_offset_minutes)).date()


def same_day(
    a: datetime.date | datetime.datetime,
    b: datetime.date | datetime.datetime,
    utc_offset_minutes: int = DEFAULT_UTC_OFFSET_MINUTES,
) -> bool:
    """True when ``a`` and ``b`` fall on the same civil day."""
    if isinstance(a, datetime.datetime):
        a = day_identity(a, utc_offset_minutes)
    if isinstance(b, datetime.datetime):
        b = day_identity(b, utc_offset_minutes)
    return a == b


def _week_start(day: datetime.date) -> datetime.date:
    # weekday(): Monday=0 .. Sunday=6; weeks start on Sunday.
    return day - datetime.timedelta(days=(day.weekday() + 1) % 7)


def _week_end(day: datetime.date) -> datetime.date:
    return _week_start(day) + datetime.timedelta(days=6)


def range_for(view: ViewKind | str, anchor: datetime.date) -> tuple[datetime.date, datetime.date]:
    """Closed ``(start, end)`` day range displayed by a view anchored on ``anchor``."""
    view = ViewKind(view)
    if view is ViewKind.MONTH:
        first = anchor.replace(day=1)
        last = first + relativedelta(months=1, days=-1)
        return _week_start(first), _week_end(last)
    if view is ViewKind.WEEK:
        return _week_start(anchor), _week_end(anchor)
    return anchor, anchor


def shift(view: ViewKind | str, anchor: datetime.date, steps: int) -> datetime.date:
    """Move ``anchor`` by ``steps`` months/weeks/days (negative steps go back)."""
    view = ViewKind(view)
    if view is ViewKind.MONTH:
        return anchor + relativedelta(months=steps)
    if view is ViewKind.WEEK:
        return anchor + datetime.timedelta(weeks=steps)
    return anchor + datetime.timedelta(days=steps)


def days_between(start: datetime.date, end: datetime.date) -> Iterator[datetime.date]:
    """Yield every day from ``start`` to ``end`` inclusive."""
    if end < start:
        raise ValueError(f"range end {end} is before start {start}")
    day = start
    while day <= end:
        yield day
        day += datetime.timedelta(days=1)


def parse_day(value: str) -> datetime.date:
    """Parse a ``YYYY-MM-DD`` database date."""
    return datetime.date.fromisoformat(value.strip())


def format_day(day: datetime.date) -> str:
    return day.isoformat()


def parse_time_of_day(value: str) -> datetime.time:
    """Parse ``HH:MM``, ``HH:MM:SS`` or a ``h:mm AM`` time slot."""
    match = _TIME_12H_RE.match(value)
    if match:
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hour <= 12:
            raise ValueError(f"invalid 12-hour time: {value!r}")
        hour = hour % 12 + (12 if meridiem == "PM" else 0)
        return datetime.time(hour, minute)
    return datetime.time.fromisoformat(value.strip())


@dataclass(frozen=True)
class CalendarViewWindow:
    """A month/week/day view anchored on a day; recomputed on navigation."""

    view: ViewKind
    anchor: datetime.date

    @property
    def start(self) -> datetime.date:
        return range_for(self.view, self.anchor)[0]

    @property
    def end(self) -> datetime.date:
        return range_for(self.view, self.anchor)[1]

    def contains(self, day: datetime.date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[datetime.date]:
        return days_between(self.start, self.end)

    def next(self) -> "CalendarViewWindow":
        return CalendarViewWindow(self.view, shift(self.view, self.anchor, 1))

    def previous(self) -> "CalendarViewWindow":
        return CalendarViewWindow(self.view, shift(self.view, self.anchor, -1))


class TimeWindow:
    """Binds the configured service UTC offset."""

    def __init__(self, utc_offset_minutes: int = DEFAULT_UTC_OFFSET_MINUTES):
        self.utc_offset_minutes = utc_offset_minutes

    def day_identity(self, instant: datetime.datetime) -> datetime.date:
        return day_identity(instant, self.utc_offset_minutes)

    def same_day(self, a, b) -> bool:
        return same_day(a, b, self.utc_offset_minutes)

    def today(self, now: datetime.datetime) -> datetime.date:
        """Civil day for ``now``; callers supply the clock reading."""
        return self.day_identity(now)

    def window(self, view: ViewKind | str, now: datetime.datetime) -> CalendarViewWindow:
        return CalendarViewWindow(ViewKind(view), self.today(now))
