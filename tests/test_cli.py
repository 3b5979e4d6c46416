"""
CLI smoke tests using typer's CliRunner with an in-memory remote.
"""

import datetime

import pytest
from typer.testing import CliRunner

from pool_scheduler import cli
from pool_scheduler.cache import DayCache
from pool_scheduler.models import RemoteUnavailable
from tests.conftest import make_appointment
from tests.fake_store import FakeAppointmentStore
from tests.fake_store import FakeServiceRecordStore

runner = CliRunner()

DAY = datetime.date(2024, 3, 12)


class FakeRemote(FakeAppointmentStore, FakeServiceRecordStore):
    def __init__(self):
        FakeAppointmentStore.__init__(self)
        FakeServiceRecordStore.__init__(self)
        self.offline = False

    def list_appointments(self, start, end):
        if self.offline:
            raise RemoteUnavailable("network unreachable")
        return super().list_appointments(start, end)

    def ping(self):
        return not self.offline


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "pool-scheduler.conf"
    path.write_text(
        "[pool-scheduler]\n"
        "remote_url = https://example.supabase.co\n"
        "api_key = anon-key\n"
        "max_occurrences = 5\n"
    )
    return path


@pytest.fixture
def remote(monkeypatch):
    fake = FakeRemote()
    monkeypatch.setattr(cli, "RestStore", lambda *args, **kwargs: fake)
    monkeypatch.setattr(cli, "_today", lambda cfg: DAY)
    return fake


def _invoke(config_file, queue_db, *args):
    return runner.invoke(
        cli.app, ["--config", str(config_file), "--queue-db", str(queue_db), *args]
    )


class TestPreview:
    def test_lists_weekly_dates(self, tmp_path):
        result = _invoke(
            tmp_path / "missing.conf", tmp_path / "q.db",
            "preview", "weekly", "2024-01-01", "--to", "2024-01-31",
        )
        assert result.exit_code == 0, result.output
        for day in ("2024-01-01", "2024-01-08", "2024-01-29"):
            assert day in result.output
        assert "2024-02-05" not in result.output

    def test_respects_configured_cap(self, config_file, tmp_path):
        result = _invoke(config_file, tmp_path / "q.db", "preview", "daily", "2024-01-01")
        assert result.exit_code == 0, result.output
        assert "2024-01-05" in result.output
        assert "2024-01-06" not in result.output
        assert "more not shown" in result.output


class TestQueueCommands:
    def test_add_list_clear(self, tmp_path):
        conf, db = tmp_path / "missing.conf", tmp_path / "q.db"

        added = _invoke(conf, db, "queue", "add", "--field", "ph=7.4", "--field", "notes=ok")
        assert added.exit_code == 0, added.output
        assert "Queued" in added.output

        listed = _invoke(conf, db, "queue", "list")
        assert "1 queued service record(s)" in listed.output

        cleared = _invoke(conf, db, "queue", "clear", "--yes")
        assert "Removed 1 record(s)" in cleared.output
        assert "Queue is empty" in _invoke(conf, db, "queue", "list").output

    def test_add_rejects_empty_record(self, tmp_path):
        result = _invoke(tmp_path / "missing.conf", tmp_path / "q.db", "queue", "add")
        assert result.exit_code != 0


class TestRemoteCommands:
    def test_missing_remote_config_is_an_error(self, tmp_path):
        result = _invoke(tmp_path / "missing.conf", tmp_path / "q.db", "calendar")
        assert result.exit_code == 1
        assert "remote_url" in result.output

    def test_sync_delivers_queue(self, config_file, tmp_path, remote):
        db = tmp_path / "q.db"
        _invoke(config_file, db, "queue", "add", "--field", "ph=7.4")

        result = _invoke(config_file, db, "sync")

        assert result.exit_code == 0, result.output
        assert "Sync Complete" in result.output
        assert len(remote.records) == 1

    def test_schedule_series_then_delete_future(self, config_file, tmp_path, remote):
        db = tmp_path / "q.db"
        created = _invoke(
            config_file, db, "schedule",
            "--date", "2024-01-01", "--time", "9:00 AM", "--service", "Weekly Cleaning",
            "--repeat", "weekly", "--until", "2024-01-29",
        )
        assert created.exit_code == 0, created.output
        assert len(remote.appointments) == 5

        third = next(a.id for a in remote.appointments.values() if a.date == datetime.date(2024, 1, 15))
        deleted = _invoke(config_file, db, "delete", third, "--scope", "future", "--yes")
        assert deleted.exit_code == 0, deleted.output
        assert len(remote.appointments) == 2

    def test_edit_and_delete_use_configured_cap(self, config_file, tmp_path, remote, monkeypatch):
        caps = []

        class RecordingMutator(cli.SeriesMutator):
            def __init__(self, store, **kwargs):
                super().__init__(store, **kwargs)
                caps.append(self.max_occurrences)

        monkeypatch.setattr(cli, "SeriesMutator", RecordingMutator)
        remote.create_appointment(make_appointment("a1", DAY))
        db = tmp_path / "q.db"

        edited = _invoke(config_file, db, "edit", "a1", "--notes", "x")
        deleted = _invoke(config_file, db, "delete", "a1", "--yes")

        assert edited.exit_code == 0, edited.output
        assert deleted.exit_code == 0, deleted.output
        assert caps == [5, 5]

    def test_edit_standalone_with_future_scope_fails(self, config_file, tmp_path, remote):
        remote.create_appointment(make_appointment("a1", DAY))
        result = _invoke(config_file, tmp_path / "q.db", "edit", "a1", "--scope", "future", "--notes", "x")
        assert result.exit_code == 1
        assert "InvalidScope" in result.output

    def test_today_falls_back_to_cache_when_offline(self, config_file, tmp_path, remote):
        db = tmp_path / "q.db"
        remote.create_appointment(make_appointment("a1", DAY, service_type="Green Pool Recovery"))
        online = _invoke(config_file, db, "today")
        assert online.exit_code == 0, online.output

        remote.offline = True
        offline = _invoke(config_file, db, "today")
        assert offline.exit_code == 0, offline.output
        assert "Green Pool Recovery" in offline.output
        assert "offline" in offline.output

        with DayCache(db) as cache:
            appointments, _ = cache.load(DAY)
        assert [a.id for a in appointments] == ["a1"]

    def test_today_offline_without_cache(self, config_file, tmp_path, remote):
        remote.offline = True
        result = _invoke(config_file, tmp_path / "q.db", "today")
        assert result.exit_code == 1
