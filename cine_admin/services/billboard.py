"""Public billboard: upcoming showtimes from ``vista_funciones_cartelera``."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models.records import BillboardMovie, BillboardRoom, BillboardShowtime
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import FetchError, RemoteStoreError
from ..utils.normalization import split_genres

BILLBOARD_VIEW = "vista_funciones_cartelera"


def map_billboard_row(row: Dict[str, Any]) -> BillboardShowtime:
    """Map a flat view row to the nested billboard shape.

    Args:
        row: Row of ``vista_funciones_cartelera``

    Returns:
        BillboardShowtime with genres split into a list
    """
    return BillboardShowtime(
        id=row["funcion_id"],
        precio=row.get("precio_base") or 0,
        inicio=row["fecha_hora_inicio"],
        fin=row["fecha_hora_fin"],
        estado=row.get("estado_funcion") or "",
        pelicula=BillboardMovie(
            id=row["pelicula_id"],
            titulo=row.get("pelicula_titulo") or "",
            sinopsis=row.get("pelicula_sinopsis"),
            duracion_min=row.get("pelicula_duracion_min"),
            clasificacion=row.get("pelicula_clasificacion"),
            generos=split_genres(row.get("pelicula_genero")),
            poster_url=row.get("pelicula_url_poster"),
            estado_activa=bool(row.get("pelicula_estado_activa", True)),
        ),
        sala=BillboardRoom(
            id=row["sala_id"],
            nombre=row.get("sala_nombre") or "",
            tipo=row.get("tipo_sala"),
            capacidad=row.get("capacidad_total") or 0,
        ),
    )


class BillboardService:
    """Read-only queries of the billboard view."""

    def __init__(self, store: RemoteStore):
        self.store = store

    def upcoming(
        self,
        pelicula_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[BillboardShowtime]:
        """Showtimes starting from now, soonest first.

        Args:
            pelicula_id: Only showtimes of this movie
            now: Reference time (default: current UTC time)

        Raises:
            FetchError: The view could not be read
        """
        now = now or datetime.now(timezone.utc)
        filters = [Filter("fecha_hora_inicio", "gte", now)]
        if pelicula_id is not None:
            filters.insert(0, Filter("pelicula_id", "eq", pelicula_id))

        try:
            rows = self.store.select(
                BILLBOARD_VIEW, filters=filters, order=[("fecha_hora_inicio", True)]
            )
        except RemoteStoreError as e:
            raise FetchError(f"Could not load showtimes: {e.message}") from e
        return [map_billboard_row(row) for row in rows]
