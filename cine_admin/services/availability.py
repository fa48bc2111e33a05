"""Room and seat availability checks.

These are point queries against the remote store rather than cache lookups:
they guard writes, so they must see rows the caches may not have yet.
Time ranges are half-open, ``[start, end)``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..cache.collection import CollectionCache
from ..models.records import BoxOfficeTicket
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import WriteError
from ..utils.normalization import parse_timestamp

logger = logging.getLogger(__name__)

ACTIVE_RENTAL_STATES = ["Pendiente", "Confirmada"]
OPERATIONAL_ROOM_STATE = "Operativa"


class RoomAvailability(BaseModel):
    """A room annotated with its availability for a rental window."""

    sala_id: int
    nombre: str
    capacidad_total: int = 0
    tipo_sala: Optional[str] = None
    estado: Optional[str] = None
    disponible: bool = True
    conflictos: List[str] = Field(default_factory=list)


def _overlap_filters(start: datetime, end: datetime) -> List[Filter]:
    return [
        Filter("fecha_hora_inicio", "lt", end),
        Filter("fecha_hora_fin", "gt", start),
    ]


def _check_range(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValueError("end must be after start")


def _format_moment(value: Any) -> str:
    moment = parse_timestamp(value)
    return moment.strftime("%Y-%m-%d %H:%M") if moment else "?"


class AvailabilityService:
    """Overlap checks for showtimes, rentals and box-office seats."""

    def __init__(self, store: RemoteStore):
        self.store = store

    def is_room_available(
        self,
        sala_id: int,
        start: datetime,
        end: datetime,
        exclude_funcion_id: Optional[int] = None,
    ) -> bool:
        """Whether no scheduled showtime in the room overlaps the window.

        Args:
            sala_id: Room to check
            start: Window start
            end: Window end
            exclude_funcion_id: Showtime being edited, ignored in the check

        Returns:
            True when the room is free
        """
        _check_range(start, end)
        filters = [
            Filter("sala_id", "eq", sala_id),
            Filter("estado", "eq", "programada"),
            *_overlap_filters(start, end),
        ]
        if exclude_funcion_id is not None:
            filters.append(Filter("funcion_id", "neq", exclude_funcion_id))
        clashes = self.store.select("funcion", "funcion_id", filters)
        logger.debug("Room %s: %d overlapping showtime(s)", sala_id, len(clashes))
        return not clashes

    def is_room_free_for_rental(
        self,
        sala_id: int,
        start: datetime,
        end: datetime,
        exclude_renta_id: Optional[int] = None,
    ) -> bool:
        """Whether no pending or confirmed rental of the room overlaps the window."""
        _check_range(start, end)
        filters = [
            Filter("sala_id", "eq", sala_id),
            Filter("estado_renta", "in", ACTIVE_RENTAL_STATES),
            *_overlap_filters(start, end),
        ]
        if exclude_renta_id is not None:
            filters.append(Filter("renta_id", "neq", exclude_renta_id))
        return not self.store.select("renta_sala", "renta_id", filters, limit=1)

    def available_rooms_for_rental(
        self,
        start: datetime,
        end: datetime,
        exclude_renta_id: Optional[int] = None,
    ) -> List[RoomAvailability]:
        """Every operational room with its conflicts for a rental window.

        Args:
            start: Window start
            end: Window end
            exclude_renta_id: Rental being edited, ignored in the check

        Returns:
            Rooms ordered by name, ``disponible`` False when any pending or
            confirmed rental overlaps
        """
        _check_range(start, end)
        rooms = self.store.select(
            "sala",
            filters=[Filter("estado", "eq", OPERATIONAL_ROOM_STATE)],
            order=[("nombre", True)],
        )
        filters = [
            Filter("estado_renta", "in", ACTIVE_RENTAL_STATES),
            *_overlap_filters(start, end),
        ]
        if exclude_renta_id is not None:
            filters.append(Filter("renta_id", "neq", exclude_renta_id))
        rentals = self.store.select(
            "renta_sala",
            "renta_id,sala_id,fecha_hora_inicio,fecha_hora_fin,nombre_evento",
            filters,
        )

        conflicts: Dict[Any, List[str]] = {}
        for rental in rentals:
            conflicts.setdefault(rental.get("sala_id"), []).append(
                'Conflict with "{}" ({} - {})'.format(
                    rental.get("nombre_evento"),
                    _format_moment(rental.get("fecha_hora_inicio")),
                    _format_moment(rental.get("fecha_hora_fin")),
                )
            )

        result = []
        for room in rooms:
            room_conflicts = conflicts.get(room.get("sala_id"), [])
            result.append(
                RoomAvailability(
                    sala_id=room["sala_id"],
                    nombre=room.get("nombre", ""),
                    capacidad_total=room.get("capacidad_total") or 0,
                    tipo_sala=room.get("tipo_sala"),
                    estado=room.get("estado"),
                    disponible=not room_conflicts,
                    conflictos=room_conflicts,
                )
            )
        return result

    def is_seat_available(
        self,
        sala: str,
        asiento: str,
        fecha: str,
        hora: str,
        exclude_ticket_id: Optional[int] = None,
    ) -> bool:
        """Whether no active box-office ticket holds the seat for that date and time."""
        filters = [
            Filter("sala", "eq", sala),
            Filter("asiento", "eq", asiento),
            Filter("fecha", "eq", fecha),
            Filter("hora", "eq", hora),
            Filter("estado", "eq", "activo"),
        ]
        if exclude_ticket_id is not None:
            filters.append(Filter("id", "neq", exclude_ticket_id))
        return not self.store.select("tickets", "id", filters, limit=1)

    def book_seat(
        self, cache: CollectionCache[BoxOfficeTicket], values: Dict[str, Any]
    ) -> BoxOfficeTicket:
        """Create an active box-office ticket if its seat is free.

        Raises:
            WriteError: The seat is taken or the insert was rejected
        """
        missing = [k for k in ("sala", "asiento", "fecha", "hora") if not values.get(k)]
        if missing:
            raise WriteError(f"Missing field(s): {', '.join(missing)}")
        if not self.is_seat_available(
            str(values["sala"]), str(values["asiento"]), str(values["fecha"]), str(values["hora"])
        ):
            raise WriteError("The selected seat is already taken for this showtime")
        return cache.create({**values, "estado": "activo"})
