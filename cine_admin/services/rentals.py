"""Room rental pricing and search."""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence

from ..cache.collection import CollectionCache
from ..models.records import Rental
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import FetchError, RemoteStoreError, WriteError
from ..utils.normalization import parse_timestamp

logger = logging.getLogger(__name__)

# Hourly base rate per room type
HOURLY_RATES: Dict[str, Decimal] = {
    "estándar": Decimal("50"),
    "vip": Decimal("100"),
    "3d": Decimal("75"),
    "imax": Decimal("150"),
}
DEFAULT_HOURLY_RATE = Decimal("50")

EVENT_MULTIPLIERS: Dict[str, Decimal] = {
    "conferencia": Decimal("1.0"),
    "fiesta": Decimal("1.5"),
    "reunión": Decimal("1.0"),
    "evento_especial": Decimal("2.0"),
    "otros": Decimal("1.2"),
}
DEFAULT_EVENT_TYPE = "otros"

CENTS = Decimal("0.01")


def hourly_rate(room_type: Optional[str]) -> Decimal:
    """Base rate of a room type; unknown or missing types pay the standard rate."""
    if not room_type:
        return DEFAULT_HOURLY_RATE
    return HOURLY_RATES.get(room_type.strip().lower(), DEFAULT_HOURLY_RATE)


def rental_price(
    room_type: Optional[str], hours: float, event_type: str = DEFAULT_EVENT_TYPE
) -> Decimal:
    """Price of a rental: hourly rate x hours x event multiplier.

    Args:
        room_type: ``tipo_sala`` of the rented room
        hours: Rental length in hours
        event_type: Event kind (conferencia, fiesta, reunión, evento_especial, otros)

    Returns:
        Price rounded to cents
    """
    multiplier = EVENT_MULTIPLIERS.get(event_type, Decimal("1.0"))
    price = hourly_rate(room_type) * Decimal(str(hours)) * multiplier
    return price.quantize(CENTS, rounding=ROUND_HALF_UP)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def search_rentals(rentals: Sequence[Rental], term: str) -> List[Rental]:
    """Rentals whose event, room name or customer name contains ``term``.

    Matching ignores case; an empty term matches everything.
    """
    needle = term.strip().lower()
    if not needle:
        return list(rentals)

    def haystack(rental: Rental) -> List[str]:
        room = rental.sala or {}
        customer = rental.usuario or {}
        return [
            rental.nombre_evento,
            str(room.get("nombre") or ""),
            str(customer.get("nombres") or ""),
            str(customer.get("apellidos") or ""),
        ]

    return [r for r in rentals if any(needle in text.lower() for text in haystack(r))]


class RentalService:
    """Quotes and creates room rentals."""

    def __init__(self, store: RemoteStore):
        self.store = store

    def room_type(self, sala_id: Any) -> Optional[str]:
        """``tipo_sala`` of a room.

        Raises:
            FetchError: The lookup failed or the room does not exist
        """
        try:
            row = self.store.select_one("sala", "tipo_sala", [Filter("sala_id", "eq", sala_id)])
        except RemoteStoreError as e:
            raise FetchError(e.message) from e
        if row is None:
            raise FetchError(f"No room with sala_id={sala_id}")
        return row.get("tipo_sala")

    def quote(
        self,
        sala_id: Any,
        start: datetime,
        end: datetime,
        event_type: str = DEFAULT_EVENT_TYPE,
    ) -> Decimal:
        """Price of renting a room between ``start`` and ``end``.

        Raises:
            FetchError: The room could not be looked up
        """
        return rental_price(self.room_type(sala_id), hours_between(start, end), event_type)

    def create(self, cache: CollectionCache[Rental], values: Dict[str, Any]) -> Rental:
        """Create a rental, pricing it when no ``precio_total`` is given.

        ``tipo_evento`` only feeds the price and is not stored.

        Raises:
            WriteError: The window is invalid, the room is unknown or the
                insert was rejected
        """
        values = dict(values)
        event_type = str(values.pop("tipo_evento", None) or DEFAULT_EVENT_TYPE)
        if not values.get("precio_total"):
            try:
                start = parse_timestamp(values.get("fecha_hora_inicio"))
                end = parse_timestamp(values.get("fecha_hora_fin"))
            except ValueError as e:
                raise WriteError(f"Invalid rental window: {e}") from e
            if start is None or end is None or end <= start:
                raise WriteError("fecha_hora_fin must be after fecha_hora_inicio")
            try:
                price = self.quote(values.get("sala_id"), start, end, event_type)
            except FetchError as e:
                raise WriteError(e.message) from e
            values["precio_total"] = str(price)
            logger.debug("Priced rental of room %s at %s", values.get("sala_id"), price)
        return cache.create(values)
