"""
HTTP client for the hosted appointment and service-record tables.

The backend exposes a PostgREST (Supabase) style API: filters are passed as
``column=op.value`` query parameters and upserts use ``on_conflict`` with a
``Prefer: resolution=merge-duplicates`` header.
"""

import datetime
import logging
from enum import Enum

import requests

from pool_scheduler.models import Appointment
from pool_scheduler.models import Frequency
from pool_scheduler.models import RecurrenceSeries
from pool_scheduler.models import RemoteRejected
from pool_scheduler.models import RemoteUnavailable
from pool_scheduler.stores import AppointmentStore
from pool_scheduler.stores import ServiceRecordStore
from pool_scheduler.stores import UpsertResult

logger = logging.getLogger(__name__)

# Attribute name -> column name where they differ.
_COLUMN_NAMES = {
    "date": "appointment_date",
    "time": "appointment_time",
}

# Retrying later may succeed for these.
_TRANSIENT_STATUS = frozenset({408, 425, 429})


def _to_column_value(value):
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def to_columns(fields: dict) -> dict:
    """Translate an Appointment field update into row columns."""
    return {_COLUMN_NAMES.get(k, k): _to_column_value(v) for k, v in fields.items()}


def _series_from_row(row: dict, appointment_ids: list[str]) -> RecurrenceSeries:
    end = row.get("end_date")
    high_water = row.get("materialized_through")
    return RecurrenceSeries(
        id=str(row["id"]),
        frequency=Frequency(row["frequency"]),
        start=datetime.date.fromisoformat(row["start_date"]),
        end=datetime.date.fromisoformat(end) if end else None,
        anchor_day=row.get("anchor_day"),
        materialized_through=datetime.date.fromisoformat(high_water) if high_water else None,
        appointment_ids=appointment_ids,
    )


class RestStore(AppointmentStore, ServiceRecordStore):
    """Remote store over the REST API of the hosted database."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    # ------------------------------------------------------------------ #
    # Transport                                                            #
    # ------------------------------------------------------------------ #

    def _request(
        self,
        method: str,
        table: str,
        params=None,
        json=None,
        headers: dict | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        url = f"{self.base_url}/{table}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except requests.Timeout as e:
            raise RemoteUnavailable(f"{method} {table} timed out") from e
        except requests.RequestException as e:
            raise RemoteUnavailable(f"{method} {table} failed: {e}") from e

        if resp.status_code >= 500 or resp.status_code in _TRANSIENT_STATUS:
            raise RemoteUnavailable(f"HTTP {resp.status_code}: {self._error_message(resp)}")
        if resp.status_code >= 400:
            raise RemoteRejected(f"HTTP {resp.status_code}: {self._error_message(resp)}")
        return resp

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200] or resp.reason or ""
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or str(body)
        return str(body)

    def ping(self) -> bool:
        """Health check used by the connectivity watcher."""
        try:
            self._request("GET", "appointments", params={"select": "id", "limit": 0})
        except RemoteUnavailable:
            return False
        except RemoteRejected as e:
            # Reachable but refusing us; still online from a transport standpoint.
            logger.debug("Ping rejected: %s", e)
        return True

    # ------------------------------------------------------------------ #
    # AppointmentStore                                                     #
    # ------------------------------------------------------------------ #

    def list_appointments(self, start: datetime.date, end: datetime.date) -> list[Appointment]:
        resp = self._request(
            "GET",
            "appointments",
            params=[
                ("appointment_date", f"gte.{start.isoformat()}"),
                ("appointment_date", f"lte.{end.isoformat()}"),
                ("order", "appointment_date.asc,appointment_time.asc"),
            ],
        )
        return [Appointment.from_row(row) for row in resp.json()]

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        resp = self._request(
            "GET", "appointments", params={"id": f"eq.{appointment_id}", "limit": 1}
        )
        rows = resp.json()
        return Appointment.from_row(rows[0]) if rows else None

    def create_appointment(self, appointment: Appointment) -> Appointment:
        resp = self._request(
            "POST",
            "appointments",
            json=appointment.to_row(),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        return Appointment.from_row(rows[0]) if rows else appointment

    def update_appointment(self, appointment_id: str, fields: dict) -> None:
        self._request(
            "PATCH", "appointments", params={"id": f"eq.{appointment_id}"}, json=to_columns(fields)
        )

    def delete_appointment(self, appointment_id: str) -> None:
        self._request("DELETE", "appointments", params={"id": f"eq.{appointment_id}"})

    def list_series_appointments(self, series_id: str) -> list[Appointment]:
        resp = self._request(
            "GET",
            "appointments",
            params={"series_id": f"eq.{series_id}", "order": "appointment_date.asc"},
        )
        return [Appointment.from_row(row) for row in resp.json()]

    def get_series(self, series_id: str) -> RecurrenceSeries | None:
        resp = self._request(
            "GET", "appointment_series", params={"id": f"eq.{series_id}", "limit": 1}
        )
        rows = resp.json()
        if not rows:
            return None
        owned = [a.id for a in self.list_series_appointments(series_id)]
        return _series_from_row(rows[0], owned)

    def create_series(self, series: RecurrenceSeries) -> RecurrenceSeries:
        self._request(
            "POST",
            "appointment_series",
            json={
                "id": series.id,
                "frequency": Frequency(series.frequency).value,
                "start_date": series.start.isoformat(),
                "end_date": series.end.isoformat() if series.end else None,
                "anchor_day": series.anchor_day,
                "materialized_through": (
                    series.materialized_through.isoformat() if series.materialized_through else None
                ),
            },
            headers={"Prefer": "return=minimal"},
        )
        return series

    def update_series_end_date(self, series_id: str, end: datetime.date | None) -> None:
        self._request(
            "PATCH",
            "appointment_series",
            params={"id": f"eq.{series_id}"},
            json={"end_date": end.isoformat() if end else None},
        )

    def update_series_materialized_through(self, series_id: str, day: datetime.date) -> None:
        self._request(
            "PATCH",
            "appointment_series",
            params={"id": f"eq.{series_id}"},
            json={"materialized_through": day.isoformat()},
        )

    def delete_series(self, series_id: str) -> None:
        self._request("DELETE", "appointment_series", params={"id": f"eq.{series_id}"})

    # ------------------------------------------------------------------ #
    # ServiceRecordStore                                                   #
    # ------------------------------------------------------------------ #

    def upsert_service_record(self, client_id: str, payload: dict, timeout: float) -> UpsertResult:
        self._request(
            "POST",
            "service_records",
            params={"on_conflict": "client_id"},
            json={**payload, "client_id": client_id},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            timeout=timeout,
        )
        return UpsertResult(committed=True)
