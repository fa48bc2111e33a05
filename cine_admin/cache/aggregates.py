"""Sales aggregation over ``usuario_boleto`` rows.

The sales table is fetched once per refresh and grouped in an in-memory
DuckDB connection, giving per-ticket and per-user metrics in one query each.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import duckdb

from ..models.records import TicketMetrics, UserMetrics
from ..utils.normalization import parse_timestamp

SALES_COLUMNS = "usuario_boleto_id,boleto_id,usuario_id,precio_final,estado_asistencia,fecha_compra"

CONFIRMED_ATTENDANCE = "confirmada"


class SalesAggregator:
    """Groups sales rows by ticket or by user."""

    CREATE_SALES = """
    CREATE TABLE sales (
        usuario_boleto_id BIGINT,
        boleto_id BIGINT,
        usuario_id BIGINT,
        precio_final DECIMAL(12, 2),
        estado_asistencia TEXT,
        fecha_compra TIMESTAMP
    )
    """

    TICKET_QUERY = """
    SELECT
        boleto_id,
        COUNT(*) AS total_vendidos,
        COALESCE(SUM(precio_final), 0) AS ingresos_totales,
        COUNT(*) FILTER (WHERE estado_asistencia = ?) AS asistencias_confirmadas
    FROM sales
    GROUP BY boleto_id
    """

    USER_QUERY = """
    SELECT
        usuario_id,
        COUNT(*) AS total_boletos_comprados,
        COALESCE(SUM(precio_final), 0) AS total_gastado,
        COUNT(*) FILTER (WHERE estado_asistencia = ?) AS asistencias_totales,
        MAX(fecha_compra) AS ultima_compra
    FROM sales
    GROUP BY usuario_id
    """

    def __init__(self, rows: Iterable[Dict[str, Any]]):
        """Load sales rows into a private in-memory database.

        Args:
            rows: ``usuario_boleto`` rows
        """
        self._conn = duckdb.connect(":memory:")
        self._conn.execute(self.CREATE_SALES)
        records = [self._to_tuple(row) for row in rows]
        if records:
            self._conn.executemany(
                "INSERT INTO sales VALUES (?, ?, ?, ?, ?, ?)", records
            )

    @staticmethod
    def _to_tuple(row: Dict[str, Any]) -> tuple:
        purchased = parse_timestamp(row.get("fecha_compra"))
        if purchased is not None:
            # Stored as naive UTC
            purchased = purchased.astimezone(timezone.utc).replace(tzinfo=None)
        price = row.get("precio_final")
        return (
            row.get("usuario_boleto_id"),
            row.get("boleto_id"),
            row.get("usuario_id"),
            Decimal(str(price)) if price is not None else None,
            row.get("estado_asistencia"),
            purchased,
        )

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SalesAggregator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def by_ticket(self) -> Dict[int, TicketMetrics]:
        """Metrics per ``boleto_id``."""
        rows = self._conn.execute(self.TICKET_QUERY, [CONFIRMED_ATTENDANCE]).fetchall()
        return {
            boleto_id: TicketMetrics(
                total_vendidos=sold,
                ingresos_totales=Decimal(revenue),
                asistencias_confirmadas=confirmed,
            )
            for boleto_id, sold, revenue, confirmed in rows
            if boleto_id is not None
        }

    def by_user(self) -> Dict[int, UserMetrics]:
        """Metrics per ``usuario_id``."""
        rows = self._conn.execute(self.USER_QUERY, [CONFIRMED_ATTENDANCE]).fetchall()
        return {
            usuario_id: UserMetrics(
                total_boletos_comprados=bought,
                total_gastado=Decimal(spent),
                asistencias_totales=confirmed,
                ultima_compra=_as_utc(last),
            )
            for usuario_id, bought, spent, confirmed, last in rows
            if usuario_id is not None
        }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def ticket_metrics(rows: List[Dict[str, Any]]) -> Dict[int, TicketMetrics]:
    """Group sales rows by ticket."""
    with SalesAggregator(rows) as aggregator:
        return aggregator.by_ticket()


def user_metrics(rows: List[Dict[str, Any]]) -> Dict[int, UserMetrics]:
    """Group sales rows by user."""
    with SalesAggregator(rows) as aggregator:
        return aggregator.by_user()
