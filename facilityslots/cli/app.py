"""
Main CLI application using Typer.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional, Tuple

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.database import create_db_engine, create_session_factory, init_db
from ..adapters.fixtures import load_fixture
from ..adapters.mock_repository import InMemoryBookingRepository
from ..adapters.sql_repository import SqlBookingRepository
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import (
    BookingConflictError,
    InvalidArgumentError,
    NotFoundError,
    RepositoryError,
    SlotEngineError,
)
from ..domain.models import TimeSlot
from ..services.availability import AvailabilityService

app = typer.Typer(
    name="facilityslots",
    help="Freie Zeitslots und Buchungskonflikte für Anlagen und Kurse berechnen",
    add_completion=False
)

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("facilityslots")

EXIT_CODES = {
    InvalidArgumentError: 2,
    BookingConflictError: 3,
    NotFoundError: 4,
    RepositoryError: 5,
}

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
MockOption = Annotated[bool, typer.Option("--mock", help="Mock-Daten nutzen statt der Datenbank.")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Debug-Logging aktivieren.")]
JsonOption = Annotated[bool, typer.Option("--json", help="Ergebnis als JSON ausgeben.")]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    if config_file is not None:
        return AppConfig.load_from_yaml(config_path)
    return AppConfig.load_or_default(config_path)


def _build_service(config: AppConfig, mock: bool) -> AvailabilityService:
    """Wire the service to the in-memory fixture store or to the configured database."""
    if mock:
        repository = InMemoryBookingRepository.from_file(config.mock_data_file, timezone=config.timezone)
    else:
        engine = create_db_engine(config.database_url)
        repository = SqlBookingRepository(create_session_factory(engine), timezone=config.timezone)
    return AvailabilityService.from_config(repository, config)


def _setup(config_file: Optional[Path], mock: bool, verbose: bool) -> Tuple[AppConfig, AvailabilityService]:
    _configure_logging(verbose)
    config = _load_config(config_file)
    if mock:
        logger.info("MOCK-MODUS: Verwende Test-Daten aus %s", config.mock_data_file or InMemoryBookingRepository.DEFAULT_DATA_FILE)
    return config, _build_service(config, mock)


def _fail(exc: Exception) -> typer.Exit:
    """Report an error and return the matching exit."""
    code = 1
    for error_type, error_code in EXIT_CODES.items():
        if isinstance(exc, error_type):
            code = error_code
            break
    err_console.print(f"[bold red]Fehler:[/bold red] {exc}")
    return typer.Exit(code)


def _parse_session(value: str) -> Dict[str, str]:
    """Parse a ``START/END`` pair of ISO timestamps."""
    start, separator, end = value.partition("/")
    if not separator or not start.strip() or not end.strip():
        raise InvalidArgumentError(f"Session must look like START/END, got {value!r}")
    return {"startTime": start.strip(), "endTime": end.strip()}


def _print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _slot_table(title: str, slots: List[TimeSlot], show_session: bool = False) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Beginn", style="bold")
    table.add_column("Ende")
    table.add_column("Status")
    if show_session:
        table.add_column("Termin-ID", style="dim")

    for slot in slots:
        status = "[green]✓ frei[/green]" if slot.is_available else "[red]✗ belegt[/red]"
        row = [slot.time_range.start.format("HH:mm"), slot.time_range.end.format("HH:mm"), status]
        if show_session:
            row.append(slot.class_session_id or "")
        table.add_row(*row)

    return table


@app.command()
def slots(
    facility_id: Annotated[str, typer.Argument(help="ID der Anlage")],
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="Datum (YYYY-MM-DD), Standard: heute")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", help="Slot-Dauer in Minuten")] = None,
    interval: Annotated[Optional[int], typer.Option("--interval", help="Raster für Startzeiten in Minuten")] = None,
    days: Annotated[Optional[int], typer.Option("--days", help="Anzahl Tage ab Datum (Bereichsmodus)")] = None,
    use_range: Annotated[bool, typer.Option("--range", "-r", help="Bereichsmodus mit defaults.range_days Tagen")] = False,
    as_json: JsonOption = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show the time slots of a facility for one day or a range of days.

    Examples:

        facilityslots slots court-1 --date 2024-01-15 --mock

        facilityslots slots court-1 --date 2024-01-15 --days 3 --duration 90

        facilityslots slots court-1 --range --mock
    """
    try:
        config, service = _setup(config_file, mock, verbose)
        day = date or pendulum.now(service.timezone).to_date_string()
        slot_duration = duration if duration is not None else config.defaults.duration_minutes
        if days is None and use_range:
            days = config.defaults.range_days

        if days is not None:
            by_day = service.get_available_time_slots_for_range(
                facility_id, day, days, slot_duration, interval
            )
            if as_json:
                _print_json({key: [slot.to_dict() for slot in value] for key, value in by_day.items()})
                return
            for key, day_slots in by_day.items():
                if not day_slots:
                    console.print(f"[yellow]{key}: geschlossen[/yellow]")
                    continue
                console.print(_slot_table(f"{facility_id} – {key}", day_slots))
            return

        day_slots = service.get_available_time_slots(facility_id, day, slot_duration, interval)
        if as_json:
            _print_json([slot.to_dict() for slot in day_slots])
            return

        if not day_slots:
            console.print(f"[yellow]⚠ Keine Zeitslots am {day} (geschlossen oder Dauer zu lang).[/yellow]")
            return

        free = sum(1 for slot in day_slots if slot.is_available)
        console.print(_slot_table(f"{facility_id} – {day}", day_slots))
        console.print(f"[bold green]✓ {free} von {len(day_slots)} Zeitslot(s) frei[/bold green]\n")

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("class-slots")
def class_slots(
    class_id: Annotated[str, typer.Argument(help="ID des Kurses")],
    date: Annotated[str, typer.Option("--date", "-d", help="Datum (YYYY-MM-DD)")],
    as_json: JsonOption = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Show the sessions of a class on a day, flagged by remaining capacity.
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        session_slots = service.get_class_time_slots(class_id, date)

        if as_json:
            _print_json([slot.to_dict() for slot in session_slots])
            return

        if not session_slots:
            console.print(f"[yellow]Keine Termine für {class_id} am {date}.[/yellow]")
            return

        console.print(_slot_table(f"{class_id} – {date}", session_slots, show_session=True))

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("class-dates")
def class_dates(
    class_id: Annotated[str, typer.Argument(help="ID des Kurses")],
    since: Annotated[Optional[str], typer.Option("--since", help="Ab Datum (YYYY-MM-DD), Standard: heute")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    List the dates on which a class has upcoming sessions.
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        now = service.normalize_day(since) if since else None
        for day in service.get_class_dates(class_id, now=now):
            console.print(day)

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command()
def check(
    facility_id: Annotated[str, typer.Argument(help="ID der Anlage")],
    session: Annotated[List[str], typer.Option("--session", "-s", help="Geplanter Termin als START/END (ISO 8601), mehrfach möglich")],
    as_json: JsonOption = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Check planned sessions against the existing bookings of a facility.

    Example:

        facilityslots check room-1 -s 2024-01-15T18:30/2024-01-15T19:30 --mock
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        report = service.check_facility_availability(
            facility_id, [_parse_session(value) for value in session]
        )

        if as_json:
            _print_json(report.to_dict())
            if report.conflicting_ids:
                raise typer.Exit(EXIT_CODES[BookingConflictError])
            return

        if not report.conflicting_ids:
            console.print("[bold green]✓ Keine Konflikte gefunden.[/bold green]")
            return

        if report.conflicts:
            table = Table(title="Konflikte mit Buchungen", header_style="bold cyan")
            for column in ("ID", "Zeitraum", "Anlage", "Kunde"):
                table.add_column(column)
            for conflict in report.conflicts:
                table.add_row(conflict.id, str(conflict.time_range), conflict.facility_name or "", conflict.customer_name)
            console.print(table)

        if report.class_conflicts:
            table = Table(title="Konflikte mit Kursen", header_style="bold cyan")
            for column in ("ID", "Zeitraum", "Anlage", "Kurs", "Trainer:in"):
                table.add_column(column)
            for conflict in report.class_conflicts:
                table.add_row(
                    conflict.id,
                    str(conflict.time_range),
                    conflict.facility_name or "",
                    conflict.class_name or "",
                    conflict.instructor or "",
                )
            console.print(table)

        console.print(
            "\nKonflikte stornieren mit: "
            f"[bold]facilityslots cancel-conflicts {' '.join(report.conflicting_ids)}[/bold]"
        )
        raise typer.Exit(EXIT_CODES[BookingConflictError])

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("cancel-conflicts")
def cancel_conflicts(
    booking_ids: Annotated[List[str], typer.Argument(help="IDs der zu stornierenden Buchungen")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Cancel the given bookings (status CANCELLED).
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        count = service.cancel_conflicting_bookings(booking_ids)
        console.print(f"[green]✓ {count} Buchung(en) storniert.[/green]")

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command()
def book(
    facility_id: Annotated[str, typer.Argument(help="ID der Anlage")],
    start: Annotated[str, typer.Option("--start", help="Beginn (ISO 8601)")],
    end: Annotated[str, typer.Option("--end", help="Ende (ISO 8601)")],
    name: Annotated[str, typer.Option("--name", help="Name des Kunden")],
    email: Annotated[Optional[str], typer.Option("--email", help="E-Mail des Kunden")] = None,
    persons: Annotated[Optional[int], typer.Option("--persons", help="Anzahl Personen")] = None,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Book a facility interval; fails if it overlaps an existing booking.
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        booking = service.create_booking(
            facility_id, start, end,
            customer_name=name,
            customer_email=email,
            person_count=persons,
        )
        console.print(Panel.fit(
            f"[bold green]✓ Buchung angelegt[/bold green]\n\n"
            f"[bold]ID:[/bold] {booking.id}\n"
            f"[bold]Anlage:[/bold] {booking.facility_name or facility_id}\n"
            f"[bold]Zeitraum:[/bold] {booking.time_range}",
            title="Buchung"
        ))

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("create-class")
def create_class(
    name: Annotated[str, typer.Option("--name", help="Name des Kurses")],
    instructor: Annotated[str, typer.Option("--instructor", help="Trainer:in")],
    location_id: Annotated[str, typer.Option("--location", help="ID des Standorts")],
    session: Annotated[List[str], typer.Option("--session", "-s", help="Termin als START/END (ISO 8601), mehrfach möglich")],
    facility_id: Annotated[Optional[str], typer.Option("--facility", help="ID der belegten Anlage")] = None,
    max_participants: Annotated[Optional[int], typer.Option("--max-participants", help="Maximale Teilnehmerzahl je Termin")] = None,
    description: Annotated[str, typer.Option("--description", help="Beschreibung")] = "",
    force: Annotated[bool, typer.Option("--force", help="Konfliktprüfung überspringen.")] = False,
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Create a class with its sessions; checks the facility for conflicts first.
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        sessions = [_parse_session(value) for value in session]

        if facility_id and not force:
            report = service.check_facility_availability(facility_id, sessions)
            if report.conflicting_ids:
                console.print(
                    f"[bold red]✗ {len(report.conflicting_ids)} Konflikt(e) auf {facility_id}:[/bold red] "
                    f"{', '.join(report.conflicting_ids)}\n"
                    "Mit 'facilityslots cancel-conflicts' stornieren oder --force verwenden."
                )
                raise typer.Exit(EXIT_CODES[BookingConflictError])

        class_info, created = service.create_class_with_sessions(
            name=name,
            instructor=instructor,
            location_id=location_id,
            sessions=sessions,
            facility_id=facility_id,
            description=description,
            max_participants=max_participants,
        )
        console.print(f"[green]✓ Kurs {class_info.id} mit {len(created)} Termin(en) angelegt.[/green]")

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("set-capacity")
def set_capacity(
    session_ids: Annotated[List[str], typer.Argument(help="IDs der Kurstermine")],
    max_participants: Annotated[int, typer.Option("--max", help="Maximale Teilnehmerzahl")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
    verbose: VerboseOption = False,
):
    """
    Set the participant ceiling of class sessions.
    """
    try:
        _, service = _setup(config_file, mock, verbose)
        count = service.update_session_settings(session_ids, max_participants)
        console.print(f"[green]✓ Einstellungen für {count} Termin(e) gespeichert.[/green]")

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command("init-db")
def init_database(
    seed: Annotated[Optional[Path], typer.Option("--seed", help="JSON-Datei mit Startdaten")] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Create the database tables and optionally load seed data.
    """
    try:
        _configure_logging(verbose)
        config = _load_config(config_file)
        engine = create_db_engine(config.database_url)
        init_db(engine)
        console.print("[green]✓ Tabellen angelegt.[/green]")

        if seed is not None:
            repository = SqlBookingRepository(create_session_factory(engine), timezone=config.timezone)
            count = repository.seed(load_fixture(seed))
            console.print(f"[green]✓ {count} Datensätze aus {seed} geladen.[/green]")

    except (SlotEngineError, FileNotFoundError, ValueError) as e:
        raise _fail(e)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]facilityslots[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
