"""
Recurring series creation and scoped (single / future / all) mutation.
"""

import dataclasses
import datetime
import itertools
import logging
import uuid

from pool_scheduler.models import DEFAULT_MAX_OCCURRENCES
from pool_scheduler.models import Action
from pool_scheduler.models import Appointment
from pool_scheduler.models import AppointmentStatus
from pool_scheduler.models import Frequency
from pool_scheduler.models import InvalidScope
from pool_scheduler.models import MutationRequest
from pool_scheduler.models import MutationResult
from pool_scheduler.models import NotFound
from pool_scheduler.models import RecurrenceSeries
from pool_scheduler.models import Scope
from pool_scheduler.recurrence import is_occurrence
from pool_scheduler.recurrence import iter_occurrences
from pool_scheduler.recurrence import next_occurrence
from pool_scheduler.recurrence import occurrence_index
from pool_scheduler.stores import AppointmentStore

# Fields a mutation may change; series bookkeeping is owned by this module.
EDITABLE_FIELDS = frozenset(
    {"date", "time", "customer_id", "service_type", "status", "duration_minutes", "notes"}
)

_DETACH = {"series_id": None, "series_position": None, "recurrence_end_date": None}


class SeriesMutator:
    """Creates series and applies scoped edits/deletes against an AppointmentStore."""

    def __init__(self, store: AppointmentStore, max_occurrences: int = DEFAULT_MAX_OCCURRENCES):
        self.store = store
        self.max_occurrences = max_occurrences
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------ #
    # Creation                                                             #
    # ------------------------------------------------------------------ #

    def create_series(
        self,
        template: Appointment,
        frequency: Frequency | str,
        start: datetime.date,
        end: datetime.date | None = None,
        horizon: datetime.date | None = None,
    ) -> tuple[RecurrenceSeries, list[Appointment]]:
        """
        Record a new series and materialize its first occurrences.

        Occurrences are created from ``start`` through ``end`` (or ``horizon``
        when earlier), never more than ``max_occurrences`` of them.  Open-ended
        series are topped up later with :meth:`materialize_through`.
        """
        if end is not None and end < start:
            raise ValueError(f"series end {end} is before start {start}")

        series = RecurrenceSeries(
            id=str(uuid.uuid4()),
            frequency=Frequency(frequency),
            start=start,
            end=end,
            anchor_day=start.day,
        )
        limits = [d for d in (end, horizon) if d is not None]
        stop = min(limits) if limits else datetime.date.max
        days = list(itertools.islice(iter_occurrences(series, start, stop), self.max_occurrences))
        series.materialized_through = days[-1] if days else None

        series = self.store.create_series(series)
        created = [self._materialize(series, template, day) for day in days]
        series.appointment_ids = [a.id for a in created]
        self.logger.info(
            f"Created {series.frequency.value} series {series.id} "
            f"with {len(created)} occurrence(s) from {start}"
        )
        return series, created

    def materialize_through(self, series_id: str, day: datetime.date) -> list[Appointment]:
        """
        Create occurrences after the series' high-water mark up to ``day``.

        New appointments copy the latest one still owned by the series.  Days at
        or before ``materialized_through`` are never recreated, so occurrences
        deleted or detached with scope ``single`` stay gone.
        """
        series = self.store.get_series(series_id)
        if series is None:
            raise NotFound(f"Series {series_id} not found")
        owned = self.store.list_series_appointments(series_id)
        if not owned:
            raise NotFound(f"Series {series_id} has no appointments to copy")

        latest = max(owned, key=lambda a: a.date)
        high_water = series.materialized_through or latest.date
        first = next_occurrence(series, high_water)
        if first is None or first > day:
            return []

        days = itertools.islice(iter_occurrences(series, first, day), self.max_occurrences)
        created = [self._materialize(series, latest, d) for d in days]
        if created:
            self.store.update_series_materialized_through(series_id, created[-1].date)
            self.logger.info(f"Materialized {len(created)} more occurrence(s) of series {series_id}")
        return created

    def _materialize(
        self, series: RecurrenceSeries, template: Appointment, day: datetime.date
    ) -> Appointment:
        appointment = dataclasses.replace(
            template,
            id=str(uuid.uuid4()),
            date=day,
            series_id=series.id,
            series_position=occurrence_index(series, day),
            recurrence_end_date=series.end,
        )
        return self.store.create_appointment(appointment)

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def apply(
        self,
        appointment_id: str,
        scope: Scope | str,
        action: Action | str,
        new_fields: dict | None = None,
    ) -> MutationResult:
        """Mutate an appointment, standalone or part of a series."""
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")

        request = MutationRequest(
            scope=Scope(scope),
            action=Action(action),
            occurrence_day=appointment.date,
            new_fields=dict(new_fields or {}),
        )
        if appointment.series_id is not None:
            return self.mutate(appointment.series_id, request)

        if request.scope is not Scope.SINGLE:
            raise InvalidScope(
                f"Appointment {appointment_id} is not recurring; "
                f"scope '{request.scope.value}' does not apply"
            )
        fields = _check_fields(request)
        result = MutationResult()
        if request.action is Action.DELETE:
            self.store.delete_appointment(appointment_id)
            result.deleted.append(appointment_id)
        else:
            self.store.update_appointment(appointment_id, fields)
            result.updated.append(appointment_id)
        return result

    def mutate(self, series_id: str, request: MutationRequest) -> MutationResult:
        """Apply ``request`` to the series owning ``request.occurrence_day``."""
        series = self.store.get_series(series_id)
        if series is None:
            raise NotFound(f"Series {series_id} not found")
        day = request.occurrence_day
        if not is_occurrence(series, day):
            raise NotFound(f"{day} is not an occurrence of series {series_id}")

        scope = Scope(request.scope)
        action = Action(request.action)
        fields = _check_fields(request)
        owned = sorted(self.store.list_series_appointments(series_id), key=lambda a: a.date)
        self.logger.debug(
            f"{action.value} scope={scope.value} day={day} on series {series_id} "
            f"({len(owned)} materialized)"
        )

        if scope is Scope.SINGLE:
            return self._mutate_single(series, owned, day, action, fields)

        if scope is Scope.FUTURE:
            head = [a for a in owned if a.date < day]
            if day > series.start and head:
                return self._mutate_future(series, owned, head, day, action, fields)
            # Nothing before the split point survives, so this is the whole series.
            self.logger.debug(f"Future split at {day} keeps nothing; applying to all")

        return self._mutate_all(series, owned, action, fields)

    def _mutate_single(self, series, owned, day, action, fields) -> MutationResult:
        target = next((a for a in owned if a.date == day), None)
        if target is None:
            raise NotFound(f"No materialized appointment on {day} in series {series.id}")

        result = MutationResult()
        if action is Action.DELETE:
            self.store.delete_appointment(target.id)
            result.deleted.append(target.id)
        else:
            self.store.update_appointment(target.id, {**fields, **_DETACH})
            result.detached.append(target.id)
            result.updated.append(target.id)
        self.logger.info(f"{action.value.capitalize()}d single occurrence {target.id} ({day})")
        return result

    def _mutate_future(self, series, owned, head, day, action, fields) -> MutationResult:
        tail = [a for a in owned if a.date >= day]
        cutoff = day - datetime.timedelta(days=1)
        result = MutationResult()

        if action is Action.UPDATE:
            # Split first so the tail is its own series before any field changes.
            tail_series = self.store.create_series(
                RecurrenceSeries(
                    id=str(uuid.uuid4()),
                    frequency=series.frequency,
                    start=day,
                    end=series.end,
                    anchor_day=series.anchor_day or series.start.day,
                    materialized_through=series.materialized_through,
                )
            )
            for appointment in tail:
                self.store.update_appointment(
                    appointment.id,
                    {
                        "series_id": tail_series.id,
                        "series_position": occurrence_index(tail_series, appointment.date),
                        "recurrence_end_date": series.end,
                    },
                )
            result.new_series_id = tail_series.id

        self.store.update_series_end_date(series.id, cutoff)
        for appointment in head:
            self.store.update_appointment(appointment.id, {"recurrence_end_date": cutoff})

        for appointment in tail:
            if action is Action.DELETE:
                self.store.delete_appointment(appointment.id)
                result.deleted.append(appointment.id)
            else:
                self.store.update_appointment(appointment.id, fields)
                result.updated.append(appointment.id)

        self.logger.info(
            f"Split series {series.id} at {day}: {len(head)} kept, "
            f"{len(tail)} {action.value}d"
            + (f" under new series {result.new_series_id}" if result.new_series_id else "")
        )
        return result

    def _mutate_all(self, series, owned, action, fields) -> MutationResult:
        result = MutationResult()
        for appointment in owned:
            if action is Action.DELETE:
                self.store.delete_appointment(appointment.id)
                result.deleted.append(appointment.id)
            else:
                self.store.update_appointment(appointment.id, fields)
                result.updated.append(appointment.id)

        if action is Action.DELETE:
            self.store.delete_series(series.id)
            result.series_deleted = True
        self.logger.info(f"{action.value.capitalize()}d all {len(owned)} occurrence(s) of {series.id}")
        return result


def _check_fields(request: MutationRequest) -> dict:
    """Validate and normalize ``new_fields`` for an update request."""
    if Action(request.action) is Action.DELETE:
        return {}

    fields = dict(request.new_fields)
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if "date" in fields and Scope(request.scope) is not Scope.SINGLE:
        raise InvalidScope("The date can only be changed for a single occurrence")
    if "status" in fields:
        fields["status"] = AppointmentStatus(fields["status"])
    return fields
