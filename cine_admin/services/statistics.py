"""Dashboard statistics computed from cache snapshots."""

from collections import Counter
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models.records import Rental, Room, Sale, Seat, Ticket, User
from ..models.statistics import (
    BoxOfficeStatistics,
    RentalStatistics,
    RoomOccupancy,
    TicketStatistics,
    UserStatistics,
)
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import FetchError, RemoteStoreError

BOX_OFFICE_TABLE = "tickets"

CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _on_day(moment: Optional[datetime], day: datetime) -> bool:
    return moment is not None and moment.astimezone(timezone.utc).date() == day.date()


def most_common_id(ids: Iterable[Any]) -> Optional[Any]:
    """Most frequent id; ties go to the lowest id."""
    counts = Counter(i for i in ids if i is not None)
    if not counts:
        return None
    return min(counts, key=lambda key: (-counts[key], key))


def ticket_statistics(
    tickets: Sequence[Ticket],
    sales: Sequence[Sale],
    now: Optional[datetime] = None,
) -> TicketStatistics:
    """Ticket sales overview.

    Args:
        tickets: Snapshot of the tickets cache
        sales: Snapshot of the sales cache
        now: Reference time for "today" (UTC)

    Returns:
        TicketStatistics; the average price is revenue over sellable tickets
    """
    now = _now(now)
    today = [s for s in sales if _on_day(s.fecha_compra, now)]
    revenue = sum((s.precio_final for s in sales), Decimal("0"))
    top = most_common_id(s.boleto_id for s in sales)

    return TicketStatistics(
        total_boletos_base=len(tickets),
        boletos_vendidos_hoy=len(today),
        ingresos_totales=_money(revenue),
        ingresos_hoy=_money(sum((s.precio_final for s in today), Decimal("0"))),
        promedio_precio=_money(revenue / len(tickets)) if tickets else Decimal("0"),
        funcion_mas_popular=f"Boleto #{top}" if top is not None else None,
        boletos_activos=len({s.boleto_id for s in sales}),
    )


def rental_statistics(
    rentals: Sequence[Rental],
    now: Optional[datetime] = None,
) -> RentalStatistics:
    """Room rental overview.

    Active rentals are pending or confirmed and not yet over. The most
    popular room is named from the rental's room embed when present.
    """
    now = _now(now)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    revenue = sum((r.precio_total for r in rentals), Decimal("0"))
    month_revenue = sum(
        (r.precio_total for r in rentals if r.fecha_hora_inicio >= month_start),
        Decimal("0"),
    )
    active = [
        r
        for r in rentals
        if r.estado_renta in ("Pendiente", "Confirmada") and r.fecha_hora_fin >= now
    ]

    room_names: Dict[int, str] = {
        r.sala_id: r.sala["nombre"] for r in rentals if r.sala and r.sala.get("nombre")
    }
    top_room = most_common_id(r.sala_id for r in rentals)

    return RentalStatistics(
        total_rentas=len(rentals),
        rentas_activas=len(active),
        rentas_pendientes=sum(1 for r in rentals if r.estado_renta == "Pendiente"),
        ingresos_totales=_money(revenue),
        ingresos_este_mes=_money(month_revenue),
        sala_mas_popular=(
            room_names.get(top_room, f"Sala #{top_room}") if top_room is not None else None
        ),
        promedio_precio=_money(revenue / len(rentals)) if rentals else Decimal("0"),
    )


def user_statistics(
    users: Sequence[User],
    sales: Sequence[Sale],
    now: Optional[datetime] = None,
) -> UserStatistics:
    """User base overview."""
    now = _now(now)
    top = most_common_id(s.usuario_id for s in sales)
    names = {u.usuario_id: u.full_name for u in users}

    average = round(len(sales) / len(users), 2) if users else 0.0

    return UserStatistics(
        total_usuarios=len(users),
        total_trabajadores=sum(1 for u in users if u.tipo_usuario == "trabajador"),
        total_estudiantes=sum(1 for u in users if u.tipo_usuario == "estudiante"),
        usuarios_activos_hoy=len(
            {s.usuario_id for s in sales if _on_day(s.fecha_compra, now)}
        ),
        promedio_compras_por_usuario=average,
        usuario_mas_activo=(
            names.get(top) or f"Usuario #{top}" if top is not None else None
        ),
    )


def room_occupancy(rooms: Sequence[Room], seats: Sequence[Seat]) -> List[RoomOccupancy]:
    """Seat counts per state for every room, ordered by room id."""
    per_room: Dict[int, Counter] = {}
    for seat in seats:
        per_room.setdefault(seat.sala_id, Counter())[seat.estado_asiento] += 1

    occupancy = []
    for room in sorted(rooms, key=lambda r: r.sala_id or 0):
        counts = per_room.get(room.sala_id, Counter())
        occupancy.append(
            RoomOccupancy(
                sala_id=room.sala_id,
                nombre=room.nombre,
                capacidad_total=room.capacidad_total,
                total_asientos=sum(counts.values()),
                disponibles=counts["disponible"],
                ocupados=counts["ocupado"],
                mantenimiento=counts["mantenimiento"],
            )
        )
    return occupancy


def box_office_statistics(store: RemoteStore) -> BoxOfficeStatistics:
    """Box-office tickets per state, counted by the database.

    Raises:
        FetchError: A count query failed
    """
    try:
        return BoxOfficeStatistics(
            active=store.count(BOX_OFFICE_TABLE, [Filter("estado", "eq", "activo")]),
            used=store.count(BOX_OFFICE_TABLE, [Filter("estado", "eq", "usado")]),
            cancelled=store.count(BOX_OFFICE_TABLE, [Filter("estado", "eq", "cancelado")]),
            total=store.count(BOX_OFFICE_TABLE),
        )
    except RemoteStoreError as e:
        raise FetchError(e.message) from e
