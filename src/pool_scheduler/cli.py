"""
Command-line interface for Pool Scheduler.
"""

import datetime
import json
import logging
import uuid
from configparser import ConfigParser
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pool_scheduler.cache import DayCache
from pool_scheduler.calendar_index import index
from pool_scheduler.models import DEFAULT_CONFIG
from pool_scheduler.models import DEFAULT_MAX_OCCURRENCES
from pool_scheduler.models import DEFAULT_QUEUE_DB
from pool_scheduler.models import DEFAULT_UPSERT_TIMEOUT
from pool_scheduler.models import DEFAULT_UTC_OFFSET_MINUTES
from pool_scheduler.models import Action
from pool_scheduler.models import Appointment
from pool_scheduler.models import AppointmentStatus
from pool_scheduler.models import Frequency
from pool_scheduler.models import RecurrenceSeries
from pool_scheduler.models import RemoteUnavailable
from pool_scheduler.models import SchedulerConfig
from pool_scheduler.models import SchedulerError
from pool_scheduler.models import Scope
from pool_scheduler.models import SyncReport
from pool_scheduler.models import ViewKind
from pool_scheduler.offline_queue import OfflineQueue
from pool_scheduler.recurrence import expand
from pool_scheduler.remote import RestStore
from pool_scheduler.series import SeriesMutator
from pool_scheduler.stores import NotificationSink
from pool_scheduler.sync import ConnectivitySignal
from pool_scheduler.sync import SyncCoordinator
from pool_scheduler.sync import poll
from pool_scheduler.timewindow import CalendarViewWindow
from pool_scheduler.timewindow import TimeWindow
from pool_scheduler.timewindow import format_day
from pool_scheduler.timewindow import parse_day
from pool_scheduler.timewindow import parse_time_of_day

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Pool service scheduling: recurring appointments, calendar views and offline sync.",
)
queue_app = typer.Typer(no_args_is_help=True, help="Inspect and manage the offline queue.")
app.add_typer(queue_app, name="queue")

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    queue_db: Path = field(default_factory=lambda: DEFAULT_QUEUE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    queue_db: Annotated[
        Path,
        typer.Option("--queue-db", help=f"Offline queue DB path (default: {DEFAULT_QUEUE_DB})"),
    ] = DEFAULT_QUEUE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.queue_db = queue_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if "pool-scheduler" not in parser:
        return {}
    return dict(parser["pool-scheduler"])


def _build_config() -> SchedulerConfig:
    config_file = _load_config_file(state.config_path)
    try:
        return SchedulerConfig(
            queue_db_path=state.queue_db,
            remote_url=config_file.get("remote_url"),
            api_key=config_file.get("api_key"),
            utc_offset_minutes=int(
                config_file.get("utc_offset_minutes", DEFAULT_UTC_OFFSET_MINUTES)
            ),
            upsert_timeout=float(config_file.get("upsert_timeout", DEFAULT_UPSERT_TIMEOUT)),
            max_occurrences=int(config_file.get("max_occurrences", DEFAULT_MAX_OCCURRENCES)),
            verbose=state.verbose,
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid value in {state.config_path}: {e}")
        raise typer.Exit(1) from None


def _remote(cfg: SchedulerConfig) -> RestStore:
    if not cfg.remote_url or not cfg.api_key:
        console.print(
            "[bold red]Error:[/] [cyan]remote_url[/] and [cyan]api_key[/] must be set in "
            f"the [cyan][pool-scheduler][/] section of {state.config_path}."
        )
        raise typer.Exit(1)
    return RestStore(cfg.remote_url, cfg.api_key, timeout=cfg.upsert_timeout)


def _today(cfg: SchedulerConfig) -> datetime.date:
    return TimeWindow(cfg.utc_offset_minutes).today(datetime.datetime.now(datetime.timezone.utc))


def _parse_day_option(value: str | None, cfg: SchedulerConfig) -> datetime.date:
    if value is None:
        return _today(cfg)
    try:
        return parse_day(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from None


@contextmanager
def _reporting_errors():
    """Turn scheduling errors into a red message and exit status 1."""
    try:
        yield
    except SchedulerError as e:
        console.print(f"[bold red]{type(e).__name__}:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None


def _fmt_time(value: datetime.time | None) -> str:
    return value.strftime("%I:%M %p").lstrip("0") if value else "—"


def _appointment_table(appointments: list[Appointment], title: str | None = None) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Time", style="cyan", no_wrap=True)
    table.add_column("Service")
    table.add_column("Customer", style="dim")
    table.add_column("Status")
    table.add_column("Series", style="dim")
    table.add_column("ID", style="dim")
    for a in appointments:
        series = f"#{a.series_position}" if a.is_recurring else ""
        table.add_row(_fmt_time(a.time), a.service_type, a.customer_id or "", a.status.value, series, a.id)
    return table


class ConsoleNotifier(NotificationSink):
    """Prints sync reports as a rich panel."""

    def notify(self, report: SyncReport) -> None:
        body = Text()
        body.append("  Committed: ", style="bold")
        body.append(f"{len(report.committed)}\n", style="green")
        body.append("  Failed:    ", style="bold")
        body.append(f"{len(report.failed)}", style="red" if report.failed else "green")
        for failure in report.failed:
            body.append(f"\n    {failure.record_id} ", style="dim")
            body.append(f"[{failure.kind}] ", style="yellow")
            body.append(failure.reason)
        title = "Sync Complete" if not report.failed else "Sync Finished With Errors"
        console.print(Panel(body, title=f"[bold]{title}[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Scheduling commands
# ---------------------------------------------------------------------------


@app.command()
def preview(
    frequency: Annotated[Frequency, typer.Argument(help="Series frequency")],
    start: Annotated[str, typer.Argument(help="Series start date (YYYY-MM-DD)")],
    until: Annotated[str | None, typer.Option("--until", help="Series end date")] = None,
    range_from: Annotated[str | None, typer.Option("--from", help="Range start")] = None,
    range_to: Annotated[str | None, typer.Option("--to", help="Range end")] = None,
) -> None:
    """Show the occurrence dates a series definition produces."""
    cfg = _build_config()
    start_day = _parse_day_option(start, cfg)
    end_day = _parse_day_option(until, cfg) if until else None
    series = RecurrenceSeries(id="preview", frequency=frequency, start=start_day, end=end_day)

    lo = _parse_day_option(range_from, cfg) if range_from else start_day
    if range_to:
        hi = _parse_day_option(range_to, cfg)
    else:
        hi = end_day or lo + datetime.timedelta(days=365)
    if hi < lo:
        raise typer.BadParameter("--to must not be before --from")

    days = expand(series, lo, hi)
    table = Table(title=f"{frequency.value.capitalize()} from {start_day}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Date", style="cyan")
    table.add_column("Weekday")
    for i, day in enumerate(days[: cfg.max_occurrences], start=1):
        table.add_row(str(i), format_day(day), day.strftime("%A"))
    console.print(table)
    if len(days) > cfg.max_occurrences:
        console.print(f"[dim]… {len(days) - cfg.max_occurrences} more not shown[/dim]")


@app.command()
def calendar(
    view: Annotated[ViewKind, typer.Option("--view", help="month, week or day")] = ViewKind.WEEK,
    date: Annotated[str | None, typer.Option("--date", "-d", help="Anchor day (default: today)")] = None,
) -> None:
    """Show appointments bucketed by day for a calendar view."""
    cfg = _build_config()
    window = CalendarViewWindow(view, _parse_day_option(date, cfg))
    with _reporting_errors():
        appointments = _remote(cfg).list_appointments(window.start, window.end)

    buckets = index(appointments, window)
    console.rule(f"[bold]{view.value.capitalize()} of {window.anchor}[/bold]  {window.start} → {window.end}")
    shown = 0
    for day, items in buckets.items():
        if not items and view is not ViewKind.DAY:
            continue
        console.print(_appointment_table(items, title=day.strftime("%a %b %d, %Y")))
        shown += len(items)
    console.print(f"[dim]{shown} appointment(s)[/dim]")


@app.command()
def today(
    tomorrow: Annotated[bool, typer.Option("--tomorrow", help="Show tomorrow's route")] = False,
) -> None:
    """Technician day list; falls back to the last cached copy when offline."""
    cfg = _build_config()
    day = _today(cfg) + datetime.timedelta(days=1 if tomorrow else 0)
    remote = _remote(cfg)

    with DayCache(cfg.queue_db_path) as cache:
        try:
            appointments = remote.list_appointments(day, day)
            cache.save(day, appointments, datetime.datetime.now(datetime.timezone.utc))
            title = f"Appointments for {day}"
        except RemoteUnavailable as e:
            cached = cache.load(day)
            if cached is None:
                console.print(f"[bold red]Offline and nothing cached for {day}:[/] {e}")
                raise typer.Exit(1) from None
            appointments, cached_at = cached
            title = f"Appointments for {day} [yellow](offline, cached {cached_at:%Y-%m-%d %H:%M} UTC)[/]"
        except SchedulerError as e:
            console.print(f"[bold red]{type(e).__name__}:[/] {e}")
            raise typer.Exit(1) from None

    console.print(_appointment_table(appointments, title=title))


@app.command()
def schedule(
    date: Annotated[str, typer.Option("--date", "-d", help="First appointment day (YYYY-MM-DD)")],
    time: Annotated[str, typer.Option("--time", "-t", help="Time of day, e.g. 09:30 or '9:30 AM'")],
    service: Annotated[str, typer.Option("--service", "-s", help="Service type")],
    customer: Annotated[str | None, typer.Option("--customer", help="Customer id")] = None,
    notes: Annotated[str | None, typer.Option("--notes", help="Notes")] = None,
    repeat: Annotated[
        Frequency | None, typer.Option("--repeat", help="Make it a recurring series")
    ] = None,
    until: Annotated[str | None, typer.Option("--until", help="Series end date")] = None,
) -> None:
    """Create a standalone appointment or a recurring series."""
    cfg = _build_config()
    try:
        time_of_day = parse_time_of_day(time)
    except ValueError:
        raise typer.BadParameter(f"unrecognised time {time!r}") from None
    template = Appointment(
        id="",
        date=_parse_day_option(date, cfg),
        time=time_of_day,
        customer_id=customer,
        service_type=service,
        notes=notes,
    )
    store = _remote(cfg)

    with _reporting_errors():
        if repeat is None:
            if until:
                raise typer.BadParameter("--until requires --repeat")
            created = store.create_appointment(replace(template, id=str(uuid.uuid4())))
            console.print(f"[green]Created appointment[/] {created.id} on {created.date}")
            return

        mutator = SeriesMutator(store, max_occurrences=cfg.max_occurrences)
        end = _parse_day_option(until, cfg) if until else None
        series, created = mutator.create_series(template, repeat, template.date, end)

    console.print(
        f"[green]Created {repeat.value} series[/] {series.id} with {len(created)} occurrence(s)"
    )
    if created:
        console.print(f"[dim]  {created[0].date} … {created[-1].date}[/dim]")


_SCOPE = Annotated[
    Scope,
    typer.Option("--scope", help="single: this occurrence, future: this and later, all: whole series"),
]


def _print_mutation(result) -> None:
    info = Text()
    info.append("  Updated:  ", style="bold")
    info.append(f"{len(result.updated)}\n")
    info.append("  Deleted:  ", style="bold")
    info.append(f"{len(result.deleted)}")
    if result.detached:
        info.append("\n  Detached: ", style="bold")
        info.append(f"{len(result.detached)}")
    if result.new_series_id:
        info.append("\n  New series: ", style="bold")
        info.append(result.new_series_id, style="cyan")
    if result.series_deleted:
        info.append("\n  Series removed", style="yellow")
    console.print(Panel(info, title="[bold]Results[/bold]", expand=False))


@app.command()
def edit(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    scope: _SCOPE = Scope.SINGLE,
    date: Annotated[str | None, typer.Option("--date", help="New day (single scope only)")] = None,
    time: Annotated[str | None, typer.Option("--time", help="New time of day")] = None,
    status: Annotated[AppointmentStatus | None, typer.Option("--status")] = None,
    service: Annotated[str | None, typer.Option("--service")] = None,
    notes: Annotated[str | None, typer.Option("--notes")] = None,
) -> None:
    """Update an appointment, or a scope of its recurring series."""
    cfg = _build_config()
    fields: dict = {}
    if date:
        fields["date"] = _parse_day_option(date, cfg)
    if time:
        try:
            fields["time"] = parse_time_of_day(time)
        except ValueError:
            raise typer.BadParameter(f"unrecognised time {time!r}") from None
    if status:
        fields["status"] = status
    if service:
        fields["service_type"] = service
    if notes is not None:
        fields["notes"] = notes
    if not fields:
        raise typer.BadParameter("nothing to change; pass at least one field option")

    with _reporting_errors():
        mutator = SeriesMutator(_remote(cfg), max_occurrences=cfg.max_occurrences)
        result = mutator.apply(appointment_id, scope, Action.UPDATE, fields)
    _print_mutation(result)


@app.command()
def delete(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    scope: _SCOPE = Scope.SINGLE,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Delete an appointment, or a scope of its recurring series."""
    cfg = _build_config()
    if not yes:
        typer.confirm(f"Delete {appointment_id} ({scope.value})?", abort=True)
    with _reporting_errors():
        mutator = SeriesMutator(_remote(cfg), max_occurrences=cfg.max_occurrences)
        result = mutator.apply(appointment_id, scope, Action.DELETE)
    _print_mutation(result)


# ---------------------------------------------------------------------------
# Offline queue commands
# ---------------------------------------------------------------------------


def _parse_payload(file: Path | None, fields: list[str]) -> dict:
    payload: dict = {}
    if file is not None:
        try:
            payload.update(json.loads(file.read_text()))
        except (OSError, ValueError) as e:
            raise typer.BadParameter(f"cannot read {file}: {e}") from None
    for item in fields:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {item!r}")
        payload[key] = value
    return payload


@queue_app.command("add")
def queue_add(
    file: Annotated[Path | None, typer.Option("--file", "-f", help="JSON payload file")] = None,
    field_values: Annotated[
        list[str] | None, typer.Option("--field", help="key=value pair (repeatable)")
    ] = None,
    attachment: Annotated[
        list[str] | None, typer.Option("--attachment", help="Attachment reference (repeatable)")
    ] = None,
) -> None:
    """Queue a completed service record for later delivery."""
    payload = _parse_payload(file, field_values or [])
    if attachment:
        payload["attachments"] = list(payload.get("attachments", [])) + attachment
    if not payload:
        raise typer.BadParameter("empty service record; pass --file or --field")

    with _reporting_errors(), OfflineQueue(state.queue_db) as queue:
        record = queue.enqueue(payload)
    console.print(f"[green]Queued[/] {record.id} at {record.queued_at:%Y-%m-%d %H:%M:%S} UTC")


@queue_app.command("list")
def queue_list() -> None:
    """Show pending and failed records."""
    with _reporting_errors(), OfflineQueue(state.queue_db) as queue:
        records = queue.list()
    if not records:
        console.print("[green]Queue is empty.[/]")
        return
    table = Table(title=f"{len(records)} queued service record(s)")
    table.add_column("ID", style="dim")
    table.add_column("Queued (UTC)")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Reason")
    for r in records:
        style = "red" if r.failure_reason else "yellow"
        table.add_row(
            r.id,
            f"{r.queued_at:%Y-%m-%d %H:%M}",
            Text(r.state.value, style=style),
            str(r.attempts),
            r.failure_reason or "",
        )
    console.print(table)


@queue_app.command("clear")
def queue_clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Discard every queued record without sending it."""
    if not yes:
        typer.confirm("Discard all queued service records?", abort=True)
    with _reporting_errors(), OfflineQueue(state.queue_db) as queue:
        count = queue.pending_count()
        queue.clear()
    console.print(f"[yellow]Removed {count} record(s).[/]")


# ---------------------------------------------------------------------------
# Sync commands
# ---------------------------------------------------------------------------


@app.command()
def sync() -> None:
    """Sync Now: deliver every queued service record."""
    cfg = _build_config()
    remote = _remote(cfg)
    with _reporting_errors(), OfflineQueue(cfg.queue_db_path) as queue:
        coordinator = SyncCoordinator(
            queue, remote, notifier=ConsoleNotifier(), timeout=cfg.upsert_timeout
        )
        report = coordinator.sync()
    if report is not None and report.failed:
        raise typer.Exit(1)


@app.command()
def watch(
    interval: Annotated[
        float, typer.Option("--interval", "-i", help="Seconds between connectivity checks")
    ] = 30.0,
) -> None:
    """Watch connectivity and sync whenever the remote store comes back."""
    cfg = _build_config()
    remote = _remote(cfg)
    signal = ConnectivitySignal(online=False)
    with _reporting_errors(), OfflineQueue(cfg.queue_db_path) as queue:
        coordinator = SyncCoordinator(
            queue, remote, notifier=ConsoleNotifier(), timeout=cfg.upsert_timeout
        )
        coordinator.attach(signal)
        console.print(f"[dim]Probing {cfg.remote_url} every {interval:g}s — Ctrl+C to stop[/dim]")
        poll(signal, remote.ping, interval)


@app.command()
def status() -> None:
    """Show configuration and offline queue summary."""
    cfg = _build_config()
    config_exists = state.config_path.exists()

    info = Text()
    info.append("  Config:    ", style="bold")
    info.append(str(state.config_path) + " ")
    info.append("✓" if config_exists else "(not found)", style="green" if config_exists else "red")
    info.append("\n  Remote:    ", style="bold")
    info.append(cfg.remote_url or "(not configured)", style="cyan" if cfg.remote_url else "red")
    info.append("\n  UTC offset:", style="bold")
    info.append(f" {cfg.utc_offset_minutes:+d} min")
    info.append("\n  Queue DB:  ", style="bold")
    info.append(str(cfg.queue_db_path))
    console.print(Panel(info, title="[bold]Pool Scheduler — Status[/bold]"))

    if not cfg.queue_db_path.exists():
        console.print("[yellow]Offline queue not created yet — nothing queued.[/]")
        return
    with _reporting_errors(), OfflineQueue(cfg.queue_db_path) as queue:
        records = queue.list()
    failed = sum(1 for r in records if r.failure_reason)
    console.print(
        f"  {len(records)} queued record(s)"
        + (f", [red]{failed} with failed attempts[/]" if failed else "")
    )


def main() -> None:
    app()
