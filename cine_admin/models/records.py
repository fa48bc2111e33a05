"""Record models for the cinema database tables.

Column names follow the database (Spanish) so rows validate directly from
REST responses. Joined tables arrive as nested objects; read paths that
denormalize them flatten the fields they need (see services.resources).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Literal, Optional, Union

from typing_extensions import Annotated

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from ..utils.normalization import parse_timestamp, split_genres

# Timestamps are always timezone-aware (UTC when the column has no offset)
Timestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]


class Record(BaseModel):
    """Base class for a row of a cached table."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    PRIMARY_KEY: ClassVar[str] = "id"

    @property
    def pk(self) -> Any:
        """Primary key value of this row."""
        return getattr(self, self.PRIMARY_KEY, None)


# === Catalog ===


class Movie(Record):
    """Row of ``pelicula``."""

    PRIMARY_KEY: ClassVar[str] = "pelicula_id"

    pelicula_id: Optional[int] = None
    titulo: str
    sinopsis: Optional[str] = None
    duracion: Optional[int] = Field(default=None, ge=0, description="Minutes")
    clasificacion: Optional[str] = None
    genero: Optional[str] = Field(
        default=None, description="Comma separated genres"
    )
    url_poster: Optional[str] = None
    estado: bool = Field(default=True, description="Movie is active on the billboard")

    @property
    def generos(self) -> List[str]:
        """Genres as a list."""
        return split_genres(self.genero)


class Room(Record):
    """Row of ``sala``."""

    PRIMARY_KEY: ClassVar[str] = "sala_id"

    sala_id: Optional[int] = None
    nombre: str
    capacidad_total: int = Field(default=0, ge=0)
    tipo_sala: Optional[str] = None
    estado: Union[bool, str, None] = True


class Seat(Record):
    """Row of ``asiento`` with the room name flattened in."""

    PRIMARY_KEY: ClassVar[str] = "asiento_id"

    asiento_id: Optional[int] = None
    sala_id: int
    fila: str
    numero: int = Field(ge=0)
    tipo_asiento: Literal["normal", "premium", "vip", "discapacitado"] = "normal"
    estado_asiento: Literal["disponible", "ocupado", "mantenimiento"] = "disponible"

    # Denormalized from the sala embed
    sala_nombre: Optional[str] = None
    sala_tipo: Optional[str] = None

    @property
    def label(self) -> str:
        """Seat label as printed on tickets (e.g. ``C7``)."""
        return f"{self.fila}{self.numero}"


class Showtime(Record):
    """Row of ``funcion`` with movie and room fields flattened in."""

    PRIMARY_KEY: ClassVar[str] = "funcion_id"

    funcion_id: Optional[int] = None
    pelicula_id: int
    sala_id: int
    fecha_hora_inicio: Timestamp
    fecha_hora_fin: Timestamp
    precio_base: Decimal = Field(default=Decimal("0"), ge=0)
    estado: Literal["programada", "en_curso", "cancelada", "finalizada"] = "programada"

    # Denormalized from the pelicula / sala embeds
    pelicula_titulo: Optional[str] = None
    pelicula_duracion: Optional[int] = None
    pelicula_genero: Optional[str] = None
    sala_nombre: Optional[str] = None
    sala_tipo: Optional[str] = None


class Role(Record):
    """Row of ``rol``."""

    PRIMARY_KEY: ClassVar[str] = "rol_id"

    rol_id: Optional[int] = None
    nombre: str
    fecha_creacion: Optional[Timestamp] = None


# === Sales ===


class TicketMetrics(BaseModel):
    """Sales metrics of one ticket: count, sum and filtered count."""

    total_vendidos: int = 0
    ingresos_totales: Decimal = Decimal("0")
    asistencias_confirmadas: int = 0


class TicketShowtime(BaseModel):
    """The ``funcion`` embed of a ticket."""

    model_config = ConfigDict(extra="allow")

    fecha_hora_inicio: Optional[Timestamp] = None
    fecha_hora_fin: Optional[Timestamp] = None
    precio_base: Optional[Decimal] = None
    pelicula_titulo: Optional[str] = None
    sala_nombre: Optional[str] = None
    pelicula: Optional[Dict[str, Any]] = None
    sala: Optional[Dict[str, Any]] = None


class Ticket(Record):
    """Row of ``boleto`` (a sellable ticket of a showtime)."""

    PRIMARY_KEY: ClassVar[str] = "boleto_id"

    boleto_id: Optional[int] = None
    funcion_id: int
    fecha_reserva: Optional[Timestamp] = None
    precio_pagado: Decimal = Field(default=Decimal("0"), ge=0)
    qr: Optional[str] = None

    funcion: Optional[TicketShowtime] = None
    metrics: TicketMetrics = Field(
        default_factory=TicketMetrics,
        validation_alias=AliasChoices("metrics", "metricas"),
    )


class Sale(Record):
    """Row of ``usuario_boleto`` (a ticket bought by a user)."""

    PRIMARY_KEY: ClassVar[str] = "usuario_boleto_id"

    usuario_boleto_id: Optional[int] = None
    usuario_id: int
    boleto_id: int
    precio_final: Decimal = Field(default=Decimal("0"), ge=0)
    estado_asistencia: str = "pendiente"
    fecha_compra: Optional[Timestamp] = None


class BoxOfficeTicket(Record):
    """Row of ``tickets`` (seat bookings made at the box office)."""

    PRIMARY_KEY: ClassVar[str] = "id"

    id: Optional[int] = None
    pelicula: str
    fecha: str
    hora: str
    sala: str
    asiento: str
    precio: Decimal = Decimal("0")
    estado: Literal["activo", "usado", "cancelado"] = "activo"


# === Rentals ===


class RentalMetrics(BaseModel):
    """Derived figures of a room rental."""

    duracion_horas: float = 0.0
    costo_por_hora: float = 0.0
    dias_restantes: int = 0


class Rental(Record):
    """Row of ``renta_sala`` with sala / usuario embeds."""

    PRIMARY_KEY: ClassVar[str] = "renta_id"

    renta_id: Optional[int] = None
    sala_id: int
    usuario_id: Optional[int] = None
    nombre_evento: str
    fecha_hora_inicio: Timestamp
    fecha_hora_fin: Timestamp
    precio_total: Decimal = Field(default=Decimal("0"), ge=0)
    estado_renta: Literal["Pendiente", "Confirmada", "Cancelada", "Completada"] = "Pendiente"

    sala: Optional[Dict[str, Any]] = None
    usuario: Optional[Dict[str, Any]] = None
    metrics: Optional[RentalMetrics] = Field(
        default=None,
        validation_alias=AliasChoices("metrics", "metricas"),
    )


# === Users ===


class UserMetrics(BaseModel):
    """Purchase metrics of one user."""

    total_boletos_comprados: int = 0
    total_gastado: Decimal = Decimal("0")
    asistencias_totales: int = 0
    ultima_compra: Optional[Timestamp] = None


class RoleRef(BaseModel):
    """The ``rol`` embed of a user."""

    nombre: str
    fecha_creacion: Optional[Timestamp] = None


class User(Record):
    """Row of ``usuario`` with its role and purchase metrics."""

    PRIMARY_KEY: ClassVar[str] = "usuario_id"

    ADMIN_ROLE: ClassVar[str] = "administrador"

    usuario_id: Optional[int] = None
    cedula: str
    rol_id: Optional[int] = None
    nombres: str
    apellidos: str
    email: str
    tipo_usuario: Literal["trabajador", "estudiante"] = "trabajador"
    password_hash: Optional[str] = Field(default=None, repr=False, exclude=True)

    rol: Optional[RoleRef] = None
    metrics: UserMetrics = Field(
        default_factory=UserMetrics,
        validation_alias=AliasChoices("metrics", "metricas"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.nombres} {self.apellidos}".strip()

    @property
    def is_admin(self) -> bool:
        """Whether the user's role is the administrator role."""
        return bool(self.rol and self.rol.nombre.strip().lower() == self.ADMIN_ROLE)


# === Public billboard ===


class BillboardMovie(BaseModel):
    id: int
    titulo: str
    sinopsis: Optional[str] = None
    duracion_min: Optional[int] = None
    clasificacion: Optional[str] = None
    generos: List[str] = Field(default_factory=list)
    poster_url: Optional[str] = None
    estado_activa: bool = True


class BillboardRoom(BaseModel):
    id: int
    nombre: str
    tipo: Optional[str] = None
    capacidad: int = 0


class BillboardShowtime(BaseModel):
    """A showtime as listed on the public billboard."""

    id: int
    precio: Decimal
    inicio: Timestamp
    fin: Timestamp
    estado: str
    pelicula: BillboardMovie
    sala: BillboardRoom
