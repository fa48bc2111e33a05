"""Resource catalog: how each table is read, reshaped and watched."""

import base64
import json
import math
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..cache.aggregates import SALES_COLUMNS, ticket_metrics, user_metrics
from ..cache.collection import ResourceSpec
from ..models.records import (
    BoxOfficeTicket,
    Movie,
    Rental,
    RentalMetrics,
    Role,
    Room,
    Sale,
    Seat,
    Showtime,
    Ticket,
    User,
)
from ..store.rest import Filter, RemoteStore
from ..utils.normalization import parse_timestamp

SALES_TABLE = "usuario_boleto"

# Role given to users created from the admin client
DEFAULT_USER_ROLE_ID = 2


# === Row reshaping ===


def _flatten(row: Dict[str, Any], embed: str, fields: Dict[str, str]) -> Dict[str, Any]:
    """Copy fields of a nested embed onto the row under prefixed names.

    Rows returned without the embed keep whatever flattened values the
    caller already has.
    """
    nested = row.pop(embed, None)
    if not isinstance(nested, dict):
        return row
    for source, target in fields.items():
        row[target] = nested.get(source)
    return row


def prepare_seat(row: Dict[str, Any]) -> Dict[str, Any]:
    return _flatten(dict(row), "sala", {"nombre": "sala_nombre", "tipo_sala": "sala_tipo"})


def prepare_showtime(row: Dict[str, Any]) -> Dict[str, Any]:
    row = _flatten(
        dict(row),
        "pelicula",
        {
            "titulo": "pelicula_titulo",
            "duracion": "pelicula_duracion",
            "genero": "pelicula_genero",
        },
    )
    return _flatten(row, "sala", {"nombre": "sala_nombre", "tipo_sala": "sala_tipo"})


def prepare_ticket(row: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(row)
    showtime = row.get("funcion")
    if isinstance(showtime, dict):
        showtime = dict(showtime)
        movie = showtime.get("pelicula") or {}
        room = showtime.get("sala") or {}
        showtime.setdefault("pelicula_titulo", movie.get("titulo"))
        showtime.setdefault("sala_nombre", room.get("nombre"))
        row["funcion"] = showtime
    return row


def new_ticket_qr() -> str:
    """Unique QR payload: base64 of a timestamp plus a random token."""
    payload = {"timestamp": int(time.time() * 1000), "random": secrets.token_hex(6)}
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def ticket_defaults(values: Dict[str, Any]) -> Dict[str, Any]:
    if not values.get("qr"):
        values["qr"] = new_ticket_qr()
    values.setdefault("fecha_reserva", datetime.now(timezone.utc).isoformat())
    return values


def rental_defaults(values: Dict[str, Any]) -> Dict[str, Any]:
    values.setdefault("estado_renta", "Pendiente")
    return values


def user_defaults(values: Dict[str, Any]) -> Dict[str, Any]:
    """New users are workers unless told otherwise."""
    values.setdefault("rol_id", DEFAULT_USER_ROLE_ID)
    values.setdefault("tipo_usuario", "trabajador")
    return values


def user_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    """Map ``password`` onto the stored column; the value is stored as-is."""
    if "password" in values:
        values["password_hash"] = values.pop("password")
    return values


# === Metrics ===


def _fetch_sales(
    store: RemoteStore, column: str, rows: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Fetch the sales rows needed for ``rows`` in one request."""
    ids = [row.get(column) for row in rows if row.get(column) is not None]
    if not ids:
        return []
    filters = [Filter(column, "in", ids)] if len(rows) == 1 else None
    return store.select(SALES_TABLE, SALES_COLUMNS, filters=filters)


def enrich_tickets(rows: List[Dict[str, Any]], store: RemoteStore) -> List[Dict[str, Any]]:
    """Attach per-ticket sales metrics."""
    metrics = ticket_metrics(_fetch_sales(store, "boleto_id", rows))
    return [
        {**row, "metrics": metrics[row["boleto_id"]].model_dump()}
        if row.get("boleto_id") in metrics
        else row
        for row in rows
    ]


def enrich_users(rows: List[Dict[str, Any]], store: RemoteStore) -> List[Dict[str, Any]]:
    """Attach per-user purchase metrics."""
    metrics = user_metrics(_fetch_sales(store, "usuario_id", rows))
    return [
        {**row, "metrics": metrics[row["usuario_id"]].model_dump()}
        if row.get("usuario_id") in metrics
        else row
        for row in rows
    ]


def rental_metrics(row: Dict[str, Any], now: Optional[datetime] = None) -> RentalMetrics:
    """Duration, hourly cost and days left of a rental.

    Args:
        row: ``renta_sala`` row
        now: Reference time (default: current UTC time)

    Returns:
        RentalMetrics rounded to two decimals; days left never below 0
    """
    start = parse_timestamp(row.get("fecha_hora_inicio"))
    end = parse_timestamp(row.get("fecha_hora_fin"))
    if start is None or end is None:
        return RentalMetrics()
    now = now or datetime.now(timezone.utc)

    hours = (end - start).total_seconds() / 3600
    total = float(Decimal(str(row.get("precio_total") or 0)))
    hourly = total / hours if hours > 0 else 0.0
    days_left = math.ceil((start - now).total_seconds() / 86400)

    return RentalMetrics(
        duracion_horas=round(hours, 2),
        costo_por_hora=round(hourly, 2),
        dias_restantes=max(days_left, 0),
    )


def enrich_rentals(rows: List[Dict[str, Any]], store: RemoteStore) -> List[Dict[str, Any]]:
    now = datetime.now(timezone.utc)
    return [{**row, "metrics": rental_metrics(row, now).model_dump()} for row in rows]


# === Catalog ===

MOVIES = ResourceSpec(
    name="movies",
    table="pelicula",
    model=Movie,
    order=[("titulo", True)],
)

ROOMS = ResourceSpec(
    name="rooms",
    table="sala",
    model=Room,
    order=[("sala_id", True)],
)

SEATS = ResourceSpec(
    name="seats",
    table="asiento",
    model=Seat,
    select="*, sala:sala_id(nombre, tipo_sala)",
    order=[("sala_id", True), ("fila", True), ("numero", True)],
    prepare=prepare_seat,
)

SHOWTIMES = ResourceSpec(
    name="showtimes",
    table="funcion",
    model=Showtime,
    select="*, pelicula:pelicula_id(titulo, duracion, genero), sala:sala_id(nombre, tipo_sala)",
    order=[("fecha_hora_inicio", True)],
    prepare=prepare_showtime,
)

TICKETS = ResourceSpec(
    name="tickets",
    table="boleto",
    model=Ticket,
    select="""
        *,
        funcion:funcion_id(
            fecha_hora_inicio, fecha_hora_fin, precio_base,
            pelicula:pelicula_id(titulo, duracion, clasificacion),
            sala:sala_id(nombre, capacidad_total)
        )
    """,
    order=[("fecha_reserva", False)],
    watch_tables={SALES_TABLE: Sale.PRIMARY_KEY},
    prepare=prepare_ticket,
    enrich=enrich_tickets,
    before_create=ticket_defaults,
)

SALES = ResourceSpec(
    name="sales",
    table=SALES_TABLE,
    model=Sale,
    order=[("fecha_compra", False)],
)

RENTALS = ResourceSpec(
    name="rentals",
    table="renta_sala",
    model=Rental,
    select="""
        *,
        sala:sala_id(nombre, capacidad_total, tipo_sala, estado),
        usuario:usuario_id(nombres, apellidos, email, cedula)
    """,
    order=[("fecha_hora_inicio", False)],
    enrich=enrich_rentals,
    before_create=rental_defaults,
)

USERS = ResourceSpec(
    name="users",
    table="usuario",
    model=User,
    select="*, rol:rol_id(nombre, fecha_creacion)",
    order=[("usuario_id", False)],
    watch_tables={SALES_TABLE: Sale.PRIMARY_KEY},
    enrich=enrich_users,
    before_create=user_defaults,
    before_write=user_columns,
)

ROLES = ResourceSpec(
    name="roles",
    table="rol",
    model=Role,
    order=[("nombre", True)],
)

BOX_OFFICE = ResourceSpec(
    name="box-office",
    table="tickets",
    model=BoxOfficeTicket,
    order=[("id", False)],
)

RESOURCES: Dict[str, ResourceSpec] = {
    spec.name: spec
    for spec in (
        MOVIES, ROOMS, SEATS, SHOWTIMES, TICKETS, SALES, RENTALS, USERS, ROLES, BOX_OFFICE
    )
}


def get_resource(name: str) -> ResourceSpec:
    """Look up a resource by name.

    Raises:
        KeyError: Unknown resource name
    """
    try:
        return RESOURCES[name]
    except KeyError:
        raise KeyError(name) from None


def resource_names() -> List[str]:
    return list(RESOURCES)
