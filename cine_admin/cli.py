"""Command line interface for cine-admin."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Tuple

import click
from rich.console import Console

from . import __version__
from .cache.local_state import LocalStateStore
from .config import ConfigManager
from .services.live_monitor import LiveMonitor
from .services.mutations import attempt_mutation
from .services.registry import CacheRegistry
from .services.rentals import DEFAULT_EVENT_TYPE, EVENT_MULTIPLIERS
from .services.resources import RESOURCES
from .services.session import SessionManager
from .store.rest import RemoteStore
from .ui.tables import build_record_table, build_statistics_table
from .utils.error_handling import ErrorHandler, handle_errors
from .utils.logging_setup import setup_logging
from .utils.normalization import parse_assignments

DATETIME_FORMATS = ["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S"]

RESOURCE_CHOICE = click.Choice(sorted(RESOURCES))


def json_serializer(obj):
    """Custom JSON serializer for special types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    elif isinstance(obj, Decimal):
        return float(obj)
    elif hasattr(obj, "isoformat"):
        return obj.isoformat()
    else:
        return str(obj)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=json_serializer))


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# === Context helpers ===


def _registry(ctx: click.Context) -> CacheRegistry:
    """Registry built from configuration on first use, closed with the context."""
    obj = ctx.find_root().obj
    if obj.get("registry") is None:
        config_manager: ConfigManager = obj["config_manager"]
        config_manager.require_remote()
        registry = CacheRegistry.from_config(config_manager.config)
        obj["registry"] = registry
        ctx.find_root().call_on_close(registry.close)
    return obj["registry"]


def _session(ctx: click.Context) -> SessionManager:
    obj = ctx.find_root().obj
    if obj.get("session") is None:
        config = obj["config"]
        state = LocalStateStore(config.storage.state_db_path)
        ctx.find_root().call_on_close(state.close)
        store = None
        if config.remote.configured:
            remote = config.remote
            store = RemoteStore(
                remote.url,
                remote.anon_key,
                schema=remote.schema_name,
                timeout=remote.timeout_seconds,
            )
            ctx.find_root().call_on_close(store.close)
        obj["session"] = SessionManager(store, state)
    return obj["session"]


def _guard(ctx: click.Context) -> None:
    """Require an administrator session when the configuration asks for it."""
    if ctx.find_root().obj["config"].auth.require_admin:
        _session(ctx).require_admin()


def _parse_values(assignments: Tuple[str, ...]) -> dict:
    try:
        values = parse_assignments(assignments)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--set")
    if not values:
        raise click.BadParameter("give at least one -s key=value", param_hint="--set")
    return values


# === Root group ===


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
@handle_errors
def cli(ctx: click.Context, config: Optional[str], verbose: bool):
    """cine-admin - Administration console for the cinema database.

    Browse and edit movies, rooms, seats, showtimes, tickets, sales, rentals
    and users. Lists stay in sync with the database through its realtime
    change feed.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj.setdefault("console", Console())
    ctx.obj.setdefault("error_handler", ErrorHandler(verbose=verbose))

    config_manager = ctx.obj.get("config_manager") or ConfigManager(config)
    ctx.obj["config_manager"] = config_manager
    ctx.obj["config"] = config_manager.config

    log_config = ctx.obj["config"].logging
    setup_logging("DEBUG" if verbose else log_config.level, log_config.file)


# === Session ===


@cli.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False, help="Password (prompted if omitted)")
@click.option("--remember", is_flag=True, help="Keep the session marked as remembered")
@click.pass_context
@handle_errors
def login(ctx: click.Context, email: str, password: str, remember: bool):
    """Log in as an administrator.

    EMAIL: Account email
    """
    session = _session(ctx)
    if session.store is None:
        ctx.obj["config_manager"].require_remote()
    user = session.login(email, password, remember=remember)
    ctx.obj["console"].print(f"[green]Logged in as {user.full_name} <{user.email}>[/green]")


@cli.command()
@click.pass_context
@handle_errors
def logout(ctx: click.Context):
    """Forget the stored session."""
    _session(ctx).logout()
    ctx.obj["console"].print("Logged out.")


@cli.command()
@click.pass_context
@handle_errors
def whoami(ctx: click.Context):
    """Show the logged in user."""
    session = _session(ctx)
    user = session.current_user() if session.is_authenticated() else None
    if user is None:
        ctx.obj["console"].print("[yellow]Not logged in.[/yellow]")
        ctx.exit(1)
    role = user.rol.nombre if user.rol else "-"
    ctx.obj["console"].print(f"{user.full_name} <{user.email}> (role: {role})")


# === Resources ===


@cli.command("list")
@click.argument("resource", type=RESOURCE_CHOICE)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option("--limit", type=int, default=None, help="Maximum rows to show")
@click.pass_context
@handle_errors
def list_records(ctx: click.Context, resource: str, output_format: str, limit: Optional[int]):
    """Fetch and show every row of a resource.

    RESOURCE: movies, rooms, seats, showtimes, tickets, sales, rentals, users,
    roles or box-office
    """
    _guard(ctx)
    records = _registry(ctx).cache(resource).refresh()
    if limit is not None:
        records = records[:limit]

    if output_format == "json":
        _echo_json(records)
        return

    ui = ctx.obj["config"].ui
    ctx.obj["console"].print(
        build_record_table(resource, records, style=ui.table_style, max_rows=ui.max_rows)
    )


@cli.command()
@click.argument("resource", type=RESOURCE_CHOICE)
@click.option("--timeout", type=float, default=None, help="Stop after this many seconds")
@click.pass_context
@handle_errors
def watch(ctx: click.Context, resource: str, timeout: Optional[float]):
    """Live table of a resource, redrawn on every change.

    RESOURCE: Resource to watch (Ctrl+C to stop)
    """
    _guard(ctx)
    config = ctx.obj["config"]
    cache = _registry(ctx).start(resource)
    if cache.listener is None:
        ctx.obj["console"].print("[yellow]Realtime is disabled; showing a static snapshot.[/yellow]")
    monitor = LiveMonitor(
        ctx.obj["console"], table_style=config.ui.table_style, max_rows=config.ui.max_rows
    )
    monitor.watch(cache, timeout=timeout)


@cli.command()
@click.argument("resource", type=RESOURCE_CHOICE)
@click.option("--set", "-s", "assignments", multiple=True, help="Column value as key=value")
@click.pass_context
@handle_errors
def create(ctx: click.Context, resource: str, assignments: Tuple[str, ...]):
    """Insert a row.

    RESOURCE: Resource to add to, e.g. `create movies -s titulo=Dune -s duracion=155`
    """
    _guard(ctx)
    values = _parse_values(assignments)
    registry = _registry(ctx)
    cache = registry.cache(resource)

    if resource == "box-office":
        record = registry.availability.book_seat(cache, values)
    elif resource == "rentals":
        record = registry.rentals.create(cache, values)
    else:
        record = cache.create(values)
    ctx.obj["console"].print(f"[green]Created {resource} #{record.pk}[/green]")


@cli.command()
@click.argument("resource", type=RESOURCE_CHOICE)
@click.argument("record_id")
@click.option("--set", "-s", "assignments", multiple=True, help="Column value as key=value")
@click.pass_context
@handle_errors
def update(ctx: click.Context, resource: str, record_id: str, assignments: Tuple[str, ...]):
    """Change columns of a row.

    RESOURCE: Resource of the row
    RECORD_ID: Primary key of the row
    """
    _guard(ctx)
    patch = _parse_values(assignments)
    cache = _registry(ctx).cache(resource)
    previous = cache.patch_local(record_id, patch)
    record = attempt_mutation(
        lambda: cache.update(record_id, patch),
        rollback=(lambda: cache.restore_local(previous)) if previous is not None else None,
    )
    ctx.obj["console"].print(f"[green]Updated {resource} #{record.pk}[/green]")


@cli.command()
@click.argument("resource", type=RESOURCE_CHOICE)
@click.argument("record_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@handle_errors
def delete(ctx: click.Context, resource: str, record_id: str, yes: bool):
    """Delete a row.

    RESOURCE: Resource of the row
    RECORD_ID: Primary key of the row
    """
    _guard(ctx)
    if not yes:
        click.confirm(f"Delete {resource} #{record_id}?", abort=True)
    cache = _registry(ctx).cache(resource)
    cache.delete(record_id)
    ctx.obj["console"].print(f"[green]Deleted {resource} #{record_id}[/green]")


# === Derived views ===


@cli.command()
@click.argument("kind", type=click.Choice(["tickets", "rentals", "users", "rooms", "box-office"]))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
@handle_errors
def stats(ctx: click.Context, kind: str, output_format: str):
    """Dashboard statistics.

    KIND: tickets, rentals, users, rooms (seat occupancy) or box-office
    """
    _guard(ctx)
    registry = _registry(ctx)
    result = {
        "tickets": registry.ticket_statistics,
        "rentals": registry.rental_statistics,
        "users": registry.user_statistics,
        "rooms": registry.room_occupancy,
        "box-office": registry.box_office_statistics,
    }[kind]()

    if output_format == "json":
        _echo_json(result)
    elif kind == "rooms":
        ctx.obj["console"].print(build_record_table("occupancy", result, title="room occupancy"))
    else:
        ctx.obj["console"].print(build_statistics_table(f"{kind} statistics", result))


@cli.command("search-rentals")
@click.argument("term")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
@handle_errors
def search_rentals(ctx: click.Context, term: str, output_format: str):
    """Rentals whose event, room or customer name contains TERM."""
    _guard(ctx)
    rentals = _registry(ctx).search_rentals(term)
    if output_format == "json":
        _echo_json(rentals)
        return
    ui = ctx.obj["config"].ui
    ctx.obj["console"].print(
        build_record_table(
            "rentals",
            rentals,
            style=ui.table_style,
            max_rows=ui.max_rows,
            title=f"rentals matching {term!r} ({len(rentals)})",
        )
    )


@cli.command("rental-quote")
@click.argument("room_id", type=int)
@click.argument("start", type=click.DateTime(formats=DATETIME_FORMATS))
@click.argument("end", type=click.DateTime(formats=DATETIME_FORMATS))
@click.option(
    "--event",
    "event_type",
    type=click.Choice(sorted(EVENT_MULTIPLIERS)),
    default=DEFAULT_EVENT_TYPE,
    help="Event kind (sets the price multiplier)",
)
@click.pass_context
@handle_errors
def rental_quote(
    ctx: click.Context, room_id: int, start: datetime, end: datetime, event_type: str
):
    """Price of renting a room between START and END (UTC)."""
    _guard(ctx)
    if end <= start:
        raise click.BadParameter("END must be after START", param_hint="END")
    price = _registry(ctx).rentals.quote(room_id, _as_utc(start), _as_utc(end), event_type)
    ctx.obj["console"].print(f"Room {room_id}, {event_type}: [bold]{price:.2f}[/bold]")


@cli.command()
@click.option("--movie", "movie_id", type=int, default=None, help="Only this movie")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
@handle_errors
def billboard(ctx: click.Context, movie_id: Optional[int], output_format: str):
    """Upcoming showtimes as shown on the public billboard."""
    showtimes = _registry(ctx).billboard.upcoming(pelicula_id=movie_id)

    if output_format == "json":
        _echo_json(showtimes)
        return

    from rich.table import Table

    table = Table(title=f"Billboard ({len(showtimes)})", header_style="bold blue")
    for header in ("Start", "Movie", "Genres", "Room", "Price"):
        table.add_column(header)
    for item in showtimes:
        table.add_row(
            item.inicio.strftime("%Y-%m-%d %H:%M"),
            item.pelicula.titulo,
            ", ".join(item.pelicula.generos),
            item.sala.nombre,
            f"{item.precio:.2f}",
        )
    ctx.obj["console"].print(table)


@cli.group()
def availability():
    """Room and seat availability checks."""


@availability.command("room")
@click.argument("room_id", type=int)
@click.argument("start", type=click.DateTime(formats=DATETIME_FORMATS))
@click.argument("end", type=click.DateTime(formats=DATETIME_FORMATS))
@click.option("--exclude", type=int, default=None, help="Showtime ID to ignore")
@click.pass_context
@handle_errors
def availability_room(
    ctx: click.Context, room_id: int, start: datetime, end: datetime, exclude: Optional[int]
):
    """Is a room free of scheduled showtimes between START and END (UTC)?"""
    _guard(ctx)
    if end <= start:
        raise click.BadParameter("END must be after START", param_hint="END")
    free = _registry(ctx).availability.is_room_available(
        room_id, _as_utc(start), _as_utc(end), exclude_funcion_id=exclude
    )
    if free:
        ctx.obj["console"].print(f"[green]Room {room_id} is available[/green]")
    else:
        ctx.obj["console"].print(f"[red]Room {room_id} has an overlapping showtime[/red]")
        ctx.exit(2)


@availability.command("rooms")
@click.argument("start", type=click.DateTime(formats=DATETIME_FORMATS))
@click.argument("end", type=click.DateTime(formats=DATETIME_FORMATS))
@click.option("--exclude", type=int, default=None, help="Rental ID to ignore")
@click.pass_context
@handle_errors
def availability_rooms(
    ctx: click.Context, start: datetime, end: datetime, exclude: Optional[int]
):
    """Operational rooms and their rental conflicts between START and END (UTC)."""
    _guard(ctx)
    if end <= start:
        raise click.BadParameter("END must be after START", param_hint="END")
    rooms = _registry(ctx).availability.available_rooms_for_rental(
        _as_utc(start), _as_utc(end), exclude_renta_id=exclude
    )
    console = ctx.obj["console"]
    for room in rooms:
        mark = "[green]free[/green]" if room.disponible else "[red]busy[/red]"
        console.print(f"{room.sala_id:>4}  {room.nombre:<24} {mark}")
        for conflict in room.conflictos:
            console.print(f"        [dim]{conflict}[/dim]")


@availability.command("seat")
@click.argument("sala")
@click.argument("asiento")
@click.argument("fecha")
@click.argument("hora")
@click.option("--exclude", type=int, default=None, help="Box-office ticket ID to ignore")
@click.pass_context
@handle_errors
def availability_seat(
    ctx: click.Context, sala: str, asiento: str, fecha: str, hora: str, exclude: Optional[int]
):
    """Is a box-office seat free for a date and time?

    SALA ASIENTO FECHA HORA: e.g. `Sala 1 C7 2025-06-01 18:30`
    """
    _guard(ctx)
    free = _registry(ctx).availability.is_seat_available(
        sala, asiento, fecha, hora, exclude_ticket_id=exclude
    )
    if free:
        ctx.obj["console"].print(f"[green]Seat {asiento} is available[/green]")
    else:
        ctx.obj["console"].print(f"[red]Seat {asiento} is already taken[/red]")
        ctx.exit(2)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
