"""Rich tables for resource snapshots and statistics."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from rich import box
from rich.table import Table

# (header, dotted attribute path)
Column = Tuple[str, str]

RESOURCE_COLUMNS: Dict[str, List[Column]] = {
    "movies": [
        ("ID", "pelicula_id"),
        ("Title", "titulo"),
        ("Min", "duracion"),
        ("Rating", "clasificacion"),
        ("Genres", "genero"),
        ("Active", "estado"),
    ],
    "rooms": [
        ("ID", "sala_id"),
        ("Name", "nombre"),
        ("Capacity", "capacidad_total"),
        ("Type", "tipo_sala"),
        ("State", "estado"),
    ],
    "seats": [
        ("ID", "asiento_id"),
        ("Room", "sala_nombre"),
        ("Row", "fila"),
        ("No.", "numero"),
        ("Type", "tipo_asiento"),
        ("State", "estado_asiento"),
    ],
    "showtimes": [
        ("ID", "funcion_id"),
        ("Movie", "pelicula_titulo"),
        ("Room", "sala_nombre"),
        ("Start", "fecha_hora_inicio"),
        ("End", "fecha_hora_fin"),
        ("Price", "precio_base"),
        ("State", "estado"),
    ],
    "tickets": [
        ("ID", "boleto_id"),
        ("Movie", "funcion.pelicula_titulo"),
        ("Room", "funcion.sala_nombre"),
        ("Reserved", "fecha_reserva"),
        ("Paid", "precio_pagado"),
        ("Sold", "metrics.total_vendidos"),
        ("Revenue", "metrics.ingresos_totales"),
        ("Attended", "metrics.asistencias_confirmadas"),
    ],
    "sales": [
        ("ID", "usuario_boleto_id"),
        ("User", "usuario_id"),
        ("Ticket", "boleto_id"),
        ("Price", "precio_final"),
        ("Attendance", "estado_asistencia"),
        ("Bought", "fecha_compra"),
    ],
    "rentals": [
        ("ID", "renta_id"),
        ("Event", "nombre_evento"),
        ("Room", "sala.nombre"),
        ("Start", "fecha_hora_inicio"),
        ("End", "fecha_hora_fin"),
        ("Total", "precio_total"),
        ("State", "estado_renta"),
        ("Hours", "metrics.duracion_horas"),
        ("Days left", "metrics.dias_restantes"),
    ],
    "users": [
        ("ID", "usuario_id"),
        ("Name", "full_name"),
        ("Email", "email"),
        ("Type", "tipo_usuario"),
        ("Role", "rol.nombre"),
        ("Bought", "metrics.total_boletos_comprados"),
        ("Spent", "metrics.total_gastado"),
    ],
    "roles": [
        ("ID", "rol_id"),
        ("Name", "nombre"),
        ("Created", "fecha_creacion"),
    ],
    "box-office": [
        ("ID", "id"),
        ("Movie", "pelicula"),
        ("Date", "fecha"),
        ("Time", "hora"),
        ("Room", "sala"),
        ("Seat", "asiento"),
        ("Price", "precio"),
        ("State", "estado"),
    ],
}

TABLE_BOXES = {
    "rich": box.ROUNDED,
    "simple": box.SIMPLE,
    "minimal": box.MINIMAL,
}

NUMERIC_TYPES = (int, float, Decimal)


def resolve(record: Any, path: str) -> Any:
    """Follow a dotted path through models and dicts."""
    value = record
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def format_cell(value: Any) -> str:
    """Format a value for a table cell."""
    if value is None:
        return "[dim]-[/dim]"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, Decimal):
        return f"{value:,.2f}"
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


def _columns_for(resource: str, records: Sequence[Any]) -> List[Column]:
    if resource in RESOURCE_COLUMNS:
        return RESOURCE_COLUMNS[resource]
    if records and isinstance(records[0], BaseModel):
        return [(name, name) for name in type(records[0]).model_fields]
    return []


def build_record_table(
    resource: str,
    records: Sequence[Any],
    style: str = "rich",
    max_rows: Optional[int] = None,
    title: Optional[str] = None,
) -> Table:
    """Render a snapshot as a rich table.

    Args:
        resource: Resource name (picks the columns)
        records: Snapshot records
        style: Table style (rich, simple, minimal)
        max_rows: Show at most this many rows
        title: Table title (default: resource name and row count)

    Returns:
        Rich Table
    """
    columns = _columns_for(resource, records)
    table = Table(
        title=title or f"{resource} ({len(records)})",
        box=TABLE_BOXES.get(style, box.ROUNDED),
        show_header=True,
        header_style="bold blue",
    )
    sample = records[0] if records else None
    for header, path in columns:
        numeric = sample is not None and isinstance(resolve(sample, path), NUMERIC_TYPES)
        table.add_column(header, justify="right" if numeric else "left")

    shown = records if max_rows is None else records[:max_rows]
    for record in shown:
        table.add_row(*(format_cell(resolve(record, path)) for _, path in columns))

    if max_rows is not None and len(records) > max_rows:
        table.caption = f"showing {max_rows} of {len(records)}"
    return table


def build_statistics_table(title: str, stats: BaseModel) -> Table:
    """Render a statistics model as a two-column table."""
    table = Table(title=title, box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name in type(stats).model_fields:
        table.add_row(name.replace("_", " "), format_cell(getattr(stats, name)))
    return table
