"""Tests for the dashboard statistics."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cine_admin.models.records import Rental, Room, Sale, Seat, Ticket, User
from cine_admin.services.statistics import (
    box_office_statistics,
    most_common_id,
    rental_statistics,
    room_occupancy,
    ticket_statistics,
    user_statistics,
)
from cine_admin.utils.error_handling import FetchError

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def sale(sale_id, boleto_id, usuario_id, price, bought):
    return Sale(
        usuario_boleto_id=sale_id,
        boleto_id=boleto_id,
        usuario_id=usuario_id,
        precio_final=price,
        fecha_compra=bought,
    )


SALES = [
    sale(1, 10, 1, "8.00", "2025-06-15T09:00:00Z"),
    sale(2, 10, 2, "8.00", "2025-06-15T10:30:00"),
    sale(3, 11, 1, "5.50", "2025-06-10T20:00:00+00:00"),
]

TICKETS = [
    Ticket(boleto_id=10, funcion_id=1, precio_pagado="8.00"),
    Ticket(boleto_id=11, funcion_id=2, precio_pagado="5.50"),
    Ticket(boleto_id=12, funcion_id=2, precio_pagado="5.50"),
]


class TestMostCommonId:
    def test_ties_go_to_lowest(self):
        assert most_common_id([3, 1, 3, 1, 2]) == 1
        assert most_common_id([2, 2, 1]) == 2
        assert most_common_id([]) is None
        assert most_common_id([None, None]) is None


class TestTicketStatistics:
    def test_overview(self):
        stats = ticket_statistics(TICKETS, SALES, now=NOW)

        assert stats.total_boletos_base == 3
        assert stats.boletos_vendidos_hoy == 2
        assert stats.ingresos_totales == Decimal("21.50")
        assert stats.ingresos_hoy == Decimal("16.00")
        assert stats.promedio_precio == Decimal("7.17")
        assert stats.funcion_mas_popular == "Boleto #10"
        assert stats.boletos_activos == 2

    def test_empty(self):
        stats = ticket_statistics([], [], now=NOW)
        assert stats.promedio_precio == Decimal("0")
        assert stats.funcion_mas_popular is None


class TestRentalStatistics:
    def test_overview(self):
        rentals = [
            Rental(renta_id=1, sala_id=1, nombre_evento="Boda", estado_renta="Confirmada",
                   fecha_hora_inicio="2025-06-20T10:00:00", fecha_hora_fin="2025-06-20T14:00:00",
                   precio_total="200.00", sala={"nombre": "Sala Premium"}),
            Rental(renta_id=2, sala_id=1, nombre_evento="Charla", estado_renta="Pendiente",
                   fecha_hora_inicio="2025-06-02T10:00:00", fecha_hora_fin="2025-06-02T12:00:00",
                   precio_total="100.00"),
            Rental(renta_id=3, sala_id=2, nombre_evento="Expo", estado_renta="Completada",
                   fecha_hora_inicio="2025-05-20T10:00:00", fecha_hora_fin="2025-05-20T12:00:00",
                   precio_total="50.005"),
        ]

        stats = rental_statistics(rentals, now=NOW)

        assert stats.total_rentas == 3
        assert stats.rentas_activas == 1
        assert stats.rentas_pendientes == 1
        assert stats.ingresos_totales == Decimal("350.01")
        assert stats.ingresos_este_mes == Decimal("300.00")
        assert stats.sala_mas_popular == "Sala Premium"
        assert stats.promedio_precio == Decimal("116.67")

    def test_room_without_embed(self):
        rentals = [
            Rental(sala_id=7, nombre_evento="X", fecha_hora_inicio=NOW, fecha_hora_fin=NOW),
        ]
        assert rental_statistics(rentals, now=NOW).sala_mas_popular == "Sala #7"


class TestUserStatistics:
    def test_overview(self):
        users = [
            User(usuario_id=1, cedula="1", nombres="Ana", apellidos="Ruiz", email="a@x.test"),
            User(usuario_id=2, cedula="2", nombres="Luis", apellidos="Paz", email="l@x.test",
                 tipo_usuario="estudiante"),
            User(usuario_id=3, cedula="3", nombres="Eva", apellidos="Sol", email="e@x.test"),
        ]

        stats = user_statistics(users, SALES, now=NOW)

        assert stats.total_usuarios == 3
        assert stats.total_trabajadores == 2
        assert stats.total_estudiantes == 1
        assert stats.usuarios_activos_hoy == 2
        assert stats.promedio_compras_por_usuario == 1.0
        assert stats.usuario_mas_activo == "Ana Ruiz"

    def test_unknown_top_user(self):
        stats = user_statistics([], SALES, now=NOW)
        assert stats.usuario_mas_activo == "Usuario #1"
        assert stats.promedio_compras_por_usuario == 0.0


class TestRoomOccupancy:
    def test_counts_per_state(self):
        rooms = [
            Room(sala_id=2, nombre="Sala IMAX", capacidad_total=200),
            Room(sala_id=1, nombre="Sala Premier", capacidad_total=120),
        ]
        seats = [
            Seat(sala_id=1, fila="A", numero=1, estado_asiento="disponible"),
            Seat(sala_id=1, fila="A", numero=2, estado_asiento="ocupado"),
            Seat(sala_id=1, fila="B", numero=1, estado_asiento="mantenimiento"),
            Seat(sala_id=1, fila="B", numero=2),
        ]

        first, second = room_occupancy(rooms, seats)

        assert (first.sala_id, first.nombre) == (1, "Sala Premier")
        assert first.total_asientos == 4
        assert (first.disponibles, first.ocupados, first.mantenimiento) == (2, 1, 1)
        assert second.total_asientos == 0
        assert second.capacidad_total == 200


class TestBoxOfficeStatistics:
    def test_counts_by_state(self, make_store):
        store = make_store(
            {
                "tickets": [
                    {"id": 1, "estado": "activo"},
                    {"id": 2, "estado": "activo"},
                    {"id": 3, "estado": "usado"},
                    {"id": 4, "estado": "cancelado"},
                ]
            }
        )
        stats = box_office_statistics(store)

        assert (stats.active, stats.used, stats.cancelled, stats.total) == (2, 1, 1, 4)
        assert store.count_calls("select", "tickets") == 4

    def test_failed_count_is_a_fetch_error(self, make_store):
        store = make_store({"tickets": []})
        store.fail("select", "permission denied for table tickets")
        with pytest.raises(FetchError, match="permission denied"):
            box_office_statistics(store)
