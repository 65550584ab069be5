"""
Main CLI application using Typer.
"""

import datetime as dt
import logging
from pathlib import Path
from typing import Annotated, List, Optional, Tuple, Union

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.memory_store import InMemoryBookingStore
from ..adapters.rest_store import RestBookingStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import BookingError, BookingStoreError
from ..domain.models import CourseDefinition, parse_time
from ..domain.recurrence import RecurrenceGenerator
from ..domain.tiers import tier_for_spend
from ..services.booking import BookingLine, BookingOrchestrator, BookingRequest

app = typer.Typer(
    name="spabooking",
    help="Check slots, plan treatment courses and book spa appointments",
    add_completion=False
)

console = Console()

Store = Union[InMemoryBookingStore, RestBookingStore]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
DataOption = Annotated[
    Optional[Path],
    typer.Option("--data", help="JSON fixture for the offline in-memory store (changes are not saved)"),
]


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path], allow_missing: bool = False) -> AppConfig:
    """
    Load the YAML config.

    With ``allow_missing`` a missing default config file falls back to the
    built-in defaults; an explicit ``--config`` path must always exist.
    """
    config_path = config_file or get_default_config_path()
    if config_file is None and allow_missing and not config_path.exists():
        config = AppConfig()
    else:
        config = AppConfig.load_from_yaml(config_path)

    _setup_logging(config.log_level)
    return config


def _open_store(config: AppConfig, data_file: Optional[Path]) -> Store:
    if data_file is not None:
        console.print(f"[yellow]⚠  Offline mode: using fixture {data_file}[/yellow]\n")
        return InMemoryBookingStore.from_file(data_file, timezone=config.timezone)

    if config.data_file is not None:
        console.print(f"[yellow]⚠  Offline mode: using fixture {config.data_file}[/yellow]\n")
        return InMemoryBookingStore.from_file(config.data_file, timezone=config.timezone)

    if config.api is None:
        raise BookingStoreError(
            "No booking API configured. Add an 'api' section to config.yaml or pass --data."
        )
    return RestBookingStore(config.api)


def _orchestrator(config: AppConfig, store: Store) -> BookingOrchestrator:
    return BookingOrchestrator(store, settings=config.booking, timezone=config.timezone)


def _parse_date(value: str, tz: str) -> dt.date:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date '{value}', expected YYYY-MM-DD") from e


def _parse_time(value: str) -> dt.time:
    try:
        return parse_time(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _parse_week_days(value: Optional[str]) -> Tuple[int, ...]:
    """Parse ``"1,4"`` into weekday indexes (0=Sunday ... 6=Saturday)."""
    if not value:
        return ()

    days = []
    for item in value.split(","):
        item = item.strip()
        if not item.isdigit() or not 0 <= int(item) <= 6:
            raise typer.BadParameter(f"Invalid weekday '{item}', expected 0 (Sunday) to 6 (Saturday)")
        days.append(int(item))
    return tuple(sorted(set(days)))


def _parse_service_option(value: str) -> Tuple[str, int]:
    """Parse ``"svc-id"`` or ``"svc-id:6"`` (a six-session course)."""
    service_id, _, sessions = value.partition(":")
    if not sessions:
        return service_id, 1
    if not sessions.isdigit() or int(sessions) < 1:
        raise typer.BadParameter(f"Invalid session count in '{value}'")
    return service_id, int(sessions)


def _booking_lines(store: Store, service_options: List[str]) -> List[BookingLine]:
    lines = []
    for option in service_options:
        service_id, sessions = _parse_service_option(option)
        lines.append(BookingLine(service=store.get_service(service_id), sessions=sessions))
    return lines


def _format_money(amount) -> str:
    return f"{amount:,.0f} ₫"


@app.command()
def check_slot(
    actor_id: Annotated[str, typer.Argument(help="Client or therapist id")],
    date: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    time: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    service: Annotated[Optional[str], typer.Option("--service", "-s", help="Service id (takes its duration)")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Duration in minutes")] = None,
    config_file: ConfigOption = None,
    data: DataOption = None,
):
    """
    Check whether a client or therapist is free for a slot.

    Examples:

        spabooking check-slot user-linh 2027-03-01 10:30 --service svc-facial --data fixture.json
        spabooking check-slot ther-an 2027-03-01 11:00 -d 45
    """
    try:
        config = _load_config(config_file, allow_missing=data is not None)
        store = _open_store(config, data)

        if service is not None:
            duration = store.get_service(service).duration_minutes
        if duration is None:
            console.print("[bold red]Error:[/bold red] Pass --service or --duration.")
            raise typer.Exit(1)

        day = _parse_date(date, config.timezone)
        start = _parse_time(time)
        available = _orchestrator(config, store).is_slot_available(actor_id, day, start, duration)

        if available:
            console.print(f"[bold green]✓ {day.isoformat()} {start.strftime('%H:%M')} ({duration} min) is free for {actor_id}[/bold green]")
        else:
            console.print(f"[bold red]✗ {day.isoformat()} {start.strftime('%H:%M')} ({duration} min) is not available for {actor_id}[/bold red]")
            raise typer.Exit(2)

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def plan_course(
    start_date: Annotated[str, typer.Argument(help="Date of the first session (YYYY-MM-DD)")],
    time: Annotated[str, typer.Argument(help="Session time (HH:MM)")],
    sessions: Annotated[int, typer.Argument(help="Total number of sessions")],
    days: Annotated[Optional[str], typer.Option("--days", help="Weekdays, e.g. '1,4' for Monday and Thursday (0=Sunday)")] = None,
    per_week: Annotated[Optional[int], typer.Option("--per-week", help="Sessions per week when no weekdays are given")] = None,
    weeks_per_session: Annotated[Optional[int], typer.Option("--weeks-per-session", help="One session every N weeks")] = None,
    expiry: Annotated[Optional[str], typer.Option("--expiry", help="Course expiry date (YYYY-MM-DD)")] = None,
    config_file: ConfigOption = None,
):
    """
    Preview the session dates of a treatment course.
    """
    try:
        config = _load_config(config_file, allow_missing=True)
        week_days = _parse_week_days(days)
        first_day = _parse_date(start_date, config.timezone)

        if expiry is not None:
            expiry_date = _parse_date(expiry, config.timezone)
        else:
            weeks = sessions + config.booking.course_extra_weeks
            expiry_date = pendulum.date(first_day.year, first_day.month, first_day.day).add(weeks=weeks)

        definition = CourseDefinition(
            total_sessions=sessions,
            session_time=_parse_time(time),
            start_date=first_day,
            sessions_per_week=len(week_days) or per_week or config.booking.default_sessions_per_week,
            week_days=week_days,
            weeks_per_session=weeks_per_session,
            expiry_date=expiry_date,
        )

        generator = RecurrenceGenerator()
        planned = generator.generate_sessions(definition)

        table = Table(title="Treatment course", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Date", style="bold yellow")
        table.add_column("Day")
        table.add_column("Time")
        table.add_column("Note", style="red")

        for session in planned:
            day = pendulum.date(session.date.year, session.date.month, session.date.day)
            table.add_row(
                str(session.sequence_number),
                session.date.isoformat(),
                day.format("ddd"),
                session.time.strftime("%H:%M"),
                "after expiry" if session.past_expiry else "",
            )

        console.print()
        console.print(table)
        console.print(f"Course expires on [bold]{expiry_date.isoformat()}[/bold]\n")

        warning = generator.bounds_warning(planned, expiry_date)
        if warning is not None:
            console.print(f"[yellow]⚠ {warning}[/yellow]\n")

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def check_promo(
    user_id: Annotated[str, typer.Argument(help="Client id")],
    code: Annotated[str, typer.Argument(help="Promotion code")],
    services: Annotated[List[str], typer.Option("--service", "-s", help="Service id, or 'id:N' for an N-session course")],
    date: Annotated[Optional[str], typer.Option("--date", help="Booking date (YYYY-MM-DD), defaults to today")] = None,
    config_file: ConfigOption = None,
    data: DataOption = None,
):
    """
    Check whether a promotion code applies to a cart, without booking.
    """
    try:
        config = _load_config(config_file, allow_missing=data is not None)
        store = _open_store(config, data)

        client = store.get_client(user_id)
        booking_date = _parse_date(date, config.timezone) if date else pendulum.today(config.timezone).date()
        request = BookingRequest(
            client=client,
            lines=_booking_lines(store, services),
            date=booking_date,
            time=None,
            promo_code=code,
        )

        orchestrator = _orchestrator(config, store)
        cart = orchestrator.build_cart(request)
        _, result = orchestrator.evaluate_promotion(request, cart)

        tier = tier_for_spend(client.total_spent)
        summary = (
            f"[bold]Client:[/bold] {client.name or client.id} ({tier.name}, tier {tier.level})\n"
            f"[bold]Subtotal:[/bold] {_format_money(cart.subtotal)}\n"
        )
        if result.applicable:
            console.print(Panel.fit(
                summary
                + f"[bold]Discount:[/bold] {_format_money(result.discount_amount)}\n"
                + f"[bold green]Total:[/bold green] {_format_money(cart.subtotal - result.discount_amount)}",
                title=f"✓ {code} applies"
            ))
        else:
            console.print(Panel.fit(
                summary + f"[bold red]{result.reason.value}:[/bold red] {result.message}",
                title=f"✗ {code} does not apply"
            ))
            raise typer.Exit(2)

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def book(
    user_id: Annotated[str, typer.Argument(help="Client id")],
    date: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    time: Annotated[str, typer.Argument(help="Start time of the first service (HH:MM)")],
    services: Annotated[List[str], typer.Option("--service", "-s", help="Service id, or 'id:N' for an N-session course")],
    therapist: Annotated[Optional[str], typer.Option("--therapist", "-t", help="Therapist id (default: smart assignment)")] = None,
    promo: Annotated[Optional[str], typer.Option("--promo", help="Promotion code")] = None,
    require_promo: Annotated[bool, typer.Option("--require-promo", help="Reject the booking if the promotion does not apply")] = False,
    days: Annotated[Optional[str], typer.Option("--days", help="Course weekdays, e.g. '1,4' (0=Sunday)")] = None,
    per_week: Annotated[Optional[int], typer.Option("--per-week", help="Course sessions per week")] = None,
    weeks_per_session: Annotated[Optional[int], typer.Option("--weeks-per-session", help="One course session every N weeks")] = None,
    notes: Annotated[str, typer.Option("--notes", help="Notes for the therapist")] = "",
    config_file: ConfigOption = None,
    data: DataOption = None,
):
    """
    Book one or more services back to back.

    Examples:

        spabooking book user-linh 2027-03-01 11:00 -s svc-facial -s svc-scrub --data fixture.json
        spabooking book user-minh 2027-03-01 09:00 -s svc-acne:6 --days 1,4 --promo WELCOME10
    """
    try:
        config = _load_config(config_file, allow_missing=data is not None)
        store = _open_store(config, data)

        request = BookingRequest(
            client=store.get_client(user_id),
            lines=_booking_lines(store, services),
            date=_parse_date(date, config.timezone),
            time=_parse_time(time),
            therapist_id=therapist,
            promo_code=promo,
            week_days=_parse_week_days(days),
            sessions_per_week=per_week,
            weeks_per_session=weeks_per_session,
            require_promotion=require_promo,
            notes=notes,
        )

        outcome = _orchestrator(config, store).book(request)

        for warning in outcome.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")

        if not outcome.is_committed:
            console.print(f"\n[bold red]✗ Booking rejected ({outcome.rejection.value})[/bold red]")
            if outcome.error is not None:
                console.print(f"  {outcome.error}")
            for conflict in outcome.conflicts:
                console.print(f"  • {conflict}")
            raise typer.Exit(2)

        table = Table(title=f"Booking {outcome.group_id}", show_header=True, header_style="bold cyan")
        table.add_column("Appointment", style="dim")
        table.add_column("Service", style="bold yellow")
        table.add_column("Date")
        table.add_column("Time")
        table.add_column("Therapist")

        for appointment in outcome.appointments:
            table.add_row(
                appointment.id,
                appointment.service_id,
                appointment.date.isoformat(),
                appointment.time.strftime("%H:%M"),
                appointment.therapist_id or "-",
            )

        console.print()
        console.print(table)
        for course in outcome.courses:
            console.print(
                f"Course [bold]{course.id}[/bold]: {course.total_sessions} sessions, "
                f"expires {course.expiry_date.isoformat()}"
            )
        console.print(f"\nSubtotal: {_format_money(outcome.subtotal)}")
        if outcome.discount:
            console.print(f"Discount: -{_format_money(outcome.discount)}")
        console.print(f"[bold green]Total: {_format_money(outcome.total)}[/bold green]\n")

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]spabooking[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
