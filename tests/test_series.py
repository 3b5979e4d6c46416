"""
Tests for series creation and scoped (single / future / all) mutation.

Every scenario starts from a weekly series of five Monday appointments,
2024-01-01 through 2024-01-29, held in FakeAppointmentStore.
"""

import datetime

import pytest

from pool_scheduler.models import AppointmentStatus
from pool_scheduler.models import InvalidScope
from pool_scheduler.models import MutationRequest
from pool_scheduler.models import NotFound
from pool_scheduler.series import SeriesMutator
from tests.conftest import make_appointment

D = datetime.date

MONDAYS = [D(2024, 1, 1), D(2024, 1, 8), D(2024, 1, 15), D(2024, 1, 22), D(2024, 1, 29)]


@pytest.fixture
def weekly(mutator):
    template = make_appointment("", D(2024, 1, 1), notes="gate code 1234")
    series, created = mutator.create_series(template, "weekly", D(2024, 1, 1), end=D(2024, 1, 29))
    return series, {a.date: a.id for a in created}


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateSeries:
    def test_materializes_every_occurrence(self, weekly, appointment_store):
        series, ids = weekly
        assert sorted(ids) == MONDAYS
        stored = appointment_store.list_series_appointments(series.id)
        assert [a.series_position for a in stored] == [0, 1, 2, 3, 4]
        assert all(a.recurrence_end_date == D(2024, 1, 29) for a in stored)
        assert all(a.notes == "gate code 1234" for a in stored)

    def test_open_ended_series_is_capped(self, appointment_store):
        mutator = SeriesMutator(appointment_store, max_occurrences=10)
        _, created = mutator.create_series(make_appointment("", D(2024, 1, 1)), "daily", D(2024, 1, 1))
        assert len(created) == 10
        assert created[-1].date == D(2024, 1, 10)

    def test_horizon_limits_materialization(self, mutator):
        series, created = mutator.create_series(
            make_appointment("", D(2024, 1, 1)), "daily", D(2024, 1, 1), horizon=D(2024, 1, 3)
        )
        assert [a.date for a in created] == [D(2024, 1, 1), D(2024, 1, 2), D(2024, 1, 3)]
        assert series.end is None

    def test_end_before_start_rejected(self, mutator, appointment_store):
        with pytest.raises(ValueError):
            mutator.create_series(
                make_appointment("", D(2024, 1, 1)), "weekly", D(2024, 1, 8), end=D(2024, 1, 1)
            )
        assert appointment_store.writes == []

    def test_materialize_through_copies_latest(self, mutator, appointment_store):
        series, _ = mutator.create_series(
            make_appointment("", D(2024, 1, 1)), "daily", D(2024, 1, 1), horizon=D(2024, 1, 3)
        )
        added = mutator.materialize_through(series.id, D(2024, 1, 6))
        assert [a.date for a in added] == [D(2024, 1, 4), D(2024, 1, 5), D(2024, 1, 6)]
        assert [a.series_position for a in added] == [3, 4, 5]
        assert mutator.materialize_through(series.id, D(2024, 1, 6)) == []
        assert len(appointment_store.list_series_appointments(series.id)) == 6

    def test_materialize_through_skips_deleted_latest(self, mutator, appointment_store):
        series, created = mutator.create_series(
            make_appointment("", D(2024, 1, 1)), "daily", D(2024, 1, 1), horizon=D(2024, 1, 3)
        )
        mutator.apply(created[-1].id, "single", "delete")

        added = mutator.materialize_through(series.id, D(2024, 1, 5))

        assert [a.date for a in added] == [D(2024, 1, 4), D(2024, 1, 5)]
        assert appointment_store.on(D(2024, 1, 3)) == []
        assert appointment_store.series[series.id].materialized_through == D(2024, 1, 5)

    def test_materialize_through_skips_detached_latest(self, mutator, appointment_store):
        series, created = mutator.create_series(
            make_appointment("", D(2024, 1, 1)), "daily", D(2024, 1, 1), horizon=D(2024, 1, 3)
        )
        mutator.apply(created[-1].id, "single", "update", {"notes": "moved"})

        added = mutator.materialize_through(series.id, D(2024, 1, 5))

        assert [a.date for a in added] == [D(2024, 1, 4), D(2024, 1, 5)]
        on_third = appointment_store.on(D(2024, 1, 3))
        assert [a.id for a in on_third] == [created[-1].id]
        assert on_third[0].series_id is None

    def test_materialize_through_unknown_series(self, mutator):
        with pytest.raises(NotFound):
            mutator.materialize_through("nope", D(2024, 1, 6))


# ---------------------------------------------------------------------------
# Scope: single
# ---------------------------------------------------------------------------


class TestSingleScope:
    def test_update_detaches_only_that_occurrence(self, weekly, mutator, appointment_store):
        series, ids = weekly
        target = ids[D(2024, 1, 15)]

        result = mutator.apply(target, "single", "update", {"time": datetime.time(10, 0)})

        assert result.updated == [target]
        assert result.detached == [target]
        moved = appointment_store.appointments[target]
        assert moved.time == datetime.time(10, 0)
        assert moved.series_id is None
        assert moved.series_position is None
        others = appointment_store.list_series_appointments(series.id)
        assert [a.date for a in others] == [d for d in MONDAYS if d != D(2024, 1, 15)]
        assert all(a.time == datetime.time(9, 0) for a in others)

    def test_update_can_move_the_date(self, weekly, mutator, appointment_store):
        _, ids = weekly
        target = ids[D(2024, 1, 15)]
        mutator.apply(target, "single", "update", {"date": D(2024, 1, 16)})
        assert appointment_store.appointments[target].date == D(2024, 1, 16)

    def test_delete_removes_only_that_occurrence(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 15)], "single", "delete")

        assert result.deleted == [ids[D(2024, 1, 15)]]
        assert not result.series_deleted
        assert appointment_store.get_series(series.id) is not None
        assert len(appointment_store.list_series_appointments(series.id)) == 4

    def test_unmaterialized_occurrence_is_not_found(self, weekly, mutator, appointment_store):
        series, ids = weekly
        mutator.apply(ids[D(2024, 1, 15)], "single", "delete")
        writes = len(appointment_store.writes)

        with pytest.raises(NotFound):
            mutator.mutate(
                series.id, MutationRequest("single", "update", D(2024, 1, 15), {"notes": "x"})
            )
        assert len(appointment_store.writes) == writes


# ---------------------------------------------------------------------------
# Scope: future
# ---------------------------------------------------------------------------


class TestFutureScope:
    def test_update_splits_series(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 15)], "future", "update", {"notes": "new code"})

        assert result.new_series_id is not None
        assert sorted(result.updated) == sorted(ids[d] for d in MONDAYS[2:])

        head = appointment_store.list_series_appointments(series.id)
        assert [a.date for a in head] == MONDAYS[:2]
        assert all(a.notes == "gate code 1234" for a in head)
        assert all(a.recurrence_end_date == D(2024, 1, 14) for a in head)
        assert appointment_store.series[series.id].end == D(2024, 1, 14)

        tail = appointment_store.list_series_appointments(result.new_series_id)
        assert [a.date for a in tail] == MONDAYS[2:]
        assert [a.series_position for a in tail] == [0, 1, 2]
        assert all(a.notes == "new code" for a in tail)
        tail_series = appointment_store.series[result.new_series_id]
        assert tail_series.start == D(2024, 1, 15)
        assert tail_series.end == D(2024, 1, 29)

    def test_delete_truncates_series(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 15)], "future", "delete")

        assert sorted(result.deleted) == sorted(ids[d] for d in MONDAYS[2:])
        assert result.new_series_id is None
        assert appointment_store.series[series.id].end == D(2024, 1, 14)
        assert [a.date for a in appointment_store.list_series_appointments(series.id)] == MONDAYS[:2]
        assert len(appointment_store.series) == 1

    def test_update_from_first_occurrence_acts_on_all(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 1)], "future", "update", {"notes": "all"})

        assert result.new_series_id is None
        assert len(result.updated) == 5
        assert appointment_store.series[series.id].end == D(2024, 1, 29)
        assert all(a.notes == "all" for a in appointment_store.appointments.values())

    def test_delete_from_first_occurrence_removes_series(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 1)], "future", "delete")

        assert result.series_deleted
        assert appointment_store.appointments == {}
        assert series.id not in appointment_store.series

    def test_monthly_split_on_clamped_day_keeps_anchor(self, mutator, appointment_store):
        _, created = mutator.create_series(
            make_appointment("", D(2024, 1, 31)), "monthly", D(2024, 1, 31), end=D(2024, 6, 30)
        )
        ids = {a.date: a.id for a in created}
        assert sorted(ids) == [
            D(2024, 1, 31), D(2024, 2, 29), D(2024, 3, 31),
            D(2024, 4, 30), D(2024, 5, 31), D(2024, 6, 30),
        ]

        result = mutator.apply(ids[D(2024, 4, 30)], "future", "update", {"notes": "spring"})

        tail = appointment_store.list_series_appointments(result.new_series_id)
        assert [a.date for a in tail] == [D(2024, 4, 30), D(2024, 5, 31), D(2024, 6, 30)]
        assert [a.series_position for a in tail] == [0, 1, 2]
        assert appointment_store.series[result.new_series_id].anchor_day == 31

        single = mutator.apply(ids[D(2024, 5, 31)], "single", "update", {"notes": "late"})
        assert single.detached == [ids[D(2024, 5, 31)]]


# ---------------------------------------------------------------------------
# Scope: all
# ---------------------------------------------------------------------------


class TestAllScope:
    def test_update_every_occurrence(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 22)], "all", "update", {"status": "completed"})

        assert len(result.updated) == 5
        stored = appointment_store.list_series_appointments(series.id)
        assert all(a.status is AppointmentStatus.COMPLETED for a in stored)

    def test_delete_removes_series_and_appointments(self, weekly, mutator, appointment_store):
        series, ids = weekly
        result = mutator.apply(ids[D(2024, 1, 22)], "all", "delete")

        assert sorted(result.deleted) == sorted(ids.values())
        assert result.series_deleted
        assert appointment_store.appointments == {}
        assert appointment_store.series == {}


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    def test_missing_appointment(self, mutator):
        with pytest.raises(NotFound):
            mutator.apply("missing", "single", "delete")

    def test_missing_series(self, mutator):
        with pytest.raises(NotFound):
            mutator.mutate("missing", MutationRequest("all", "delete", D(2024, 1, 1)))

    def test_day_outside_series(self, weekly, mutator, appointment_store):
        series, _ = weekly
        with pytest.raises(NotFound):
            mutator.mutate(series.id, MutationRequest("all", "delete", D(2024, 1, 16)))
        assert len(appointment_store.appointments) == 5

    def test_standalone_appointment_only_accepts_single(self, mutator, appointment_store):
        appointment_store.create_appointment(make_appointment("a1", D(2024, 2, 1)))
        with pytest.raises(InvalidScope):
            mutator.apply("a1", "future", "update", {"notes": "x"})

        result = mutator.apply("a1", "single", "update", {"notes": "x"})
        assert result.updated == ["a1"]
        assert result.detached == []
        assert appointment_store.appointments["a1"].notes == "x"

    def test_date_change_needs_single_scope(self, weekly, mutator, appointment_store):
        _, ids = weekly
        writes = len(appointment_store.writes)
        with pytest.raises(InvalidScope):
            mutator.apply(ids[D(2024, 1, 8)], "all", "update", {"date": D(2024, 1, 9)})
        assert len(appointment_store.writes) == writes

    def test_unknown_field_rejected(self, weekly, mutator):
        _, ids = weekly
        with pytest.raises(ValueError):
            mutator.apply(ids[D(2024, 1, 8)], "all", "update", {"series_id": None})
