"""Pydantic models for cine-admin."""

from .records import (
    BillboardShowtime,
    BoxOfficeTicket,
    Movie,
    Record,
    Rental,
    Role,
    Room,
    Sale,
    Seat,
    Showtime,
    Ticket,
    User,
)
from .realtime import ChangeEvent, ChangeType

__all__ = [
    "BillboardShowtime",
    "BoxOfficeTicket",
    "ChangeEvent",
    "ChangeType",
    "Movie",
    "Record",
    "Rental",
    "Role",
    "Room",
    "Sale",
    "Seat",
    "Showtime",
    "Ticket",
    "User",
]
