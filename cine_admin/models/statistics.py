"""Dashboard statistics models."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class TicketStatistics(BaseModel):
    """Ticket sales overview."""

    total_boletos_base: int = 0
    boletos_vendidos_hoy: int = 0
    ingresos_totales: Decimal = Field(default=Decimal("0"))
    ingresos_hoy: Decimal = Field(default=Decimal("0"))
    promedio_precio: Decimal = Field(default=Decimal("0"))
    funcion_mas_popular: Optional[str] = None
    boletos_activos: int = Field(default=0, description="Tickets with at least one sale")


class RentalStatistics(BaseModel):
    """Room rental overview."""

    total_rentas: int = 0
    rentas_activas: int = 0
    rentas_pendientes: int = 0
    ingresos_totales: Decimal = Field(default=Decimal("0"))
    ingresos_este_mes: Decimal = Field(default=Decimal("0"))
    sala_mas_popular: Optional[str] = None
    promedio_precio: Decimal = Field(default=Decimal("0"))


class UserStatistics(BaseModel):
    """User base overview."""

    total_usuarios: int = 0
    total_trabajadores: int = 0
    total_estudiantes: int = 0
    usuarios_activos_hoy: int = 0
    promedio_compras_por_usuario: float = 0.0
    usuario_mas_activo: Optional[str] = None


class RoomOccupancy(BaseModel):
    """Seat states of one room."""

    sala_id: int
    nombre: str
    capacidad_total: int = 0
    total_asientos: int = 0
    disponibles: int = 0
    ocupados: int = 0
    mantenimiento: int = 0


class BoxOfficeStatistics(BaseModel):
    """Box-office tickets per state."""

    active: int = 0
    used: int = 0
    cancelled: int = 0
    total: int = 0
