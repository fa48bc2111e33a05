"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from cine_admin.cli import cli
from cine_admin.config import ConfigManager
from cine_admin.services.billboard import BILLBOARD_VIEW
from cine_admin.services.registry import CacheRegistry
from cine_admin.services.session import SessionManager
from cine_admin.utils.error_handling import ErrorHandler

ADMIN = {
    "usuario_id": 1,
    "cedula": "0102030405",
    "nombres": "Ana",
    "apellidos": "Ruiz",
    "email": "ana@cine.test",
    "password_hash": "secret1",
    "rol": {"nombre": "administrador"},
}


@pytest.fixture
def backend(make_store, state, tmp_path):
    store = make_store(
        {
            "sala": [
                {"sala_id": 1, "nombre": "Room A", "capacidad_total": 80, "estado": "Operativa"},
            ],
            "usuario": [ADMIN],
            "usuario_boleto": [
                {"usuario_boleto_id": 1, "usuario_id": 1, "boleto_id": 1,
                 "precio_final": "8.00", "estado_asistencia": "confirmada",
                 "fecha_compra": "2025-06-01T10:00:00Z"},
            ],
            "funcion": [
                {"funcion_id": 1, "pelicula_id": 1, "sala_id": 1, "estado": "programada",
                 "fecha_hora_inicio": "2025-06-01T18:00:00+00:00",
                 "fecha_hora_fin": "2025-06-01T20:30:00+00:00"},
            ],
            "tickets": [
                {"id": 1, "pelicula": "Dune", "fecha": "2025-06-01", "hora": "18:30",
                 "sala": "Sala 1", "asiento": "C7", "precio": "6.00", "estado": "activo"},
            ],
            BILLBOARD_VIEW: [
                {"funcion_id": 9, "precio_base": 6, "fecha_hora_inicio": "2999-01-01T18:00:00+00:00",
                 "fecha_hora_fin": "2999-01-01T20:00:00+00:00", "estado_funcion": "programada",
                 "pelicula_id": 1, "pelicula_titulo": "Dune", "pelicula_genero": "Sci-Fi",
                 "sala_id": 1, "sala_nombre": "Room A", "capacidad_total": 80},
            ],
        }
    )
    return {
        "store": store,
        "registry": CacheRegistry(store),
        "session": SessionManager(store, state),
        "config_manager": ConfigManager(str(tmp_path / "missing.toml"), environ={}),
    }


@pytest.fixture
def run(backend):
    runner = CliRunner()

    def invoke(*args, input=None):
        obj = {
            "registry": backend["registry"],
            "session": backend["session"],
            "config_manager": backend["config_manager"],
            "console": Console(width=200),
            "error_handler": ErrorHandler(console=Console(stderr=True, width=200)),
        }
        return runner.invoke(cli, list(args), obj=obj, input=input)

    return invoke


@pytest.fixture
def logged_in(backend):
    backend["session"].login("ana@cine.test", "secret1")


class TestSessionCommands:
    def test_login_prompts_for_password(self, run, backend):
        result = run("login", "ana@cine.test", input="secret1\n")
        assert result.exit_code == 0, result.output
        assert "Logged in as Ana Ruiz" in result.output
        assert backend["session"].is_admin()

    def test_login_failure_is_an_alert(self, run):
        result = run("login", "ana@cine.test", input="wrong-password\n")
        assert result.exit_code == 1
        assert "Incorrect credentials" in result.output

    def test_whoami_and_logout(self, run, logged_in):
        result = run("whoami")
        assert result.exit_code == 0
        assert "ana@cine.test" in result.output

        assert run("logout").exit_code == 0
        result = run("whoami")
        assert result.exit_code == 1
        assert "Not logged in" in result.output


class TestGuard:
    def test_resource_commands_need_admin(self, run):
        result = run("list", "rooms")
        assert result.exit_code == 1
        assert "Log in first" in result.output

    def test_guard_can_be_disabled(self, run, backend, tmp_path):
        path = tmp_path / "open.toml"
        path.write_text("[auth]\nrequire_admin = false\n", encoding="utf-8")
        backend["config_manager"] = ConfigManager(str(path), environ={})

        result = run("list", "rooms")
        assert result.exit_code == 0, result.output
        assert "Room A" in result.output


@pytest.mark.usefixtures("logged_in")
class TestResourceCommands:
    def test_list_json(self, run):
        result = run("list", "rooms", "--format", "json")
        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert rows[0]["nombre"] == "Room A"

    def test_list_table(self, run):
        result = run("list", "rooms")
        assert result.exit_code == 0
        assert "rooms (1)" in result.output

    def test_list_fetch_failure(self, run, backend):
        backend["store"].fail("select", "permission denied for table sala")
        result = run("list", "rooms")
        assert result.exit_code == 1
        assert "Could not load data" in result.output
        assert "permission denied for table sala" in result.output

    def test_create(self, run, backend):
        result = run("create", "rooms", "-s", "nombre=Room B", "-s", "capacidad_total=40")
        assert result.exit_code == 0, result.output
        assert "Created rooms #2" in result.output
        assert backend["store"].tables["sala"][-1]["capacidad_total"] == 40

    def test_create_needs_assignments(self, run):
        result = run("create", "rooms", "-s", "nombre")
        assert result.exit_code == 2
        assert "expected key=value" in result.output

    def test_update_failure_shows_backend_message(self, run, backend):
        backend["store"].fail("update", 'new row for relation "sala" violates check constraint')
        result = run("update", "rooms", "1", "-s", "capacidad_total=-1")
        assert result.exit_code == 1
        assert "Could not save changes" in result.output
        assert 'violates check constraint' in result.output

    def test_rejected_update_restores_running_cache(self, run, backend, recorder):
        rooms = backend["registry"].start("rooms")
        rooms.get_snapshot_stream().subscribe(recorder)
        backend["store"].fail("update", "permission denied for table sala")

        result = run("update", "rooms", "1", "-s", "nombre=Room Z")

        assert result.exit_code == 1
        assert [[r.nombre for r in v] for v in recorder.values] == [
            ["Room A"], ["Room Z"], ["Room A"],
        ]

    def test_user_password_update_and_json_dump(self, run, backend):
        result = run("update", "users", "1", "-s", "password=changed1")
        assert result.exit_code == 0, result.output
        row = backend["store"].tables["usuario"][0]
        assert row["password_hash"] == "changed1"
        assert "password" not in row

        result = run("list", "users", "--format", "json")
        assert result.exit_code == 0, result.output
        assert "password_hash" not in json.loads(result.output)[0]

    def test_update(self, run, backend):
        result = run("update", "rooms", "1", "-s", "nombre=Room A+")
        assert result.exit_code == 0, result.output
        assert backend["store"].tables["sala"][0]["nombre"] == "Room A+"

    def test_delete_asks_for_confirmation(self, run, backend):
        result = run("delete", "rooms", "1", input="n\n")
        assert result.exit_code == 1
        assert backend["store"].tables["sala"]

        result = run("delete", "rooms", "1", "--yes")
        assert result.exit_code == 0
        assert "Deleted rooms #1" in result.output
        assert backend["store"].tables["sala"] == []

    def test_box_office_booking_checks_seat(self, run):
        seat = ["-s", "pelicula=Dune", "-s", "fecha=2025-06-01", "-s", "hora=18:30", "-s", "sala=Sala 1"]

        result = run("create", "box-office", *seat, "-s", "asiento=C7")
        assert result.exit_code == 1
        assert "already taken" in result.output

        result = run("create", "box-office", *seat, "-s", "asiento=C9")
        assert result.exit_code == 0, result.output
        assert "Created box-office #2" in result.output


@pytest.mark.usefixtures("logged_in")
class TestDerivedCommands:
    def test_user_stats_json(self, run):
        result = run("stats", "users", "--format", "json")
        assert result.exit_code == 0, result.output
        stats = json.loads(result.output)
        assert stats["total_usuarios"] == 1
        assert stats["usuario_mas_activo"] == "Ana Ruiz"

    def test_ticket_stats_table(self, run):
        result = run("stats", "tickets")
        assert result.exit_code == 0, result.output
        assert "ingresos totales" in result.output

    def test_billboard(self, run):
        result = run("billboard", "--format", "json")
        assert result.exit_code == 0, result.output
        [showtime] = json.loads(result.output)
        assert showtime["pelicula"]["generos"] == ["Sci-Fi"]

    def test_room_availability(self, run):
        busy = run("availability", "room", "1", "2025-06-01 19:00", "2025-06-01 21:00")
        assert busy.exit_code == 2
        assert "overlapping showtime" in busy.output

        free = run("availability", "room", "1", "2025-06-01 21:00", "2025-06-01 23:00")
        assert free.exit_code == 0
        assert "is available" in free.output

    def test_room_availability_rejects_inverted_range(self, run):
        result = run("availability", "room", "1", "2025-06-01 21:00", "2025-06-01 19:00")
        assert result.exit_code == 2

    def test_rooms_for_rental(self, run):
        result = run("availability", "rooms", "2025-06-05 09:00", "2025-06-05 12:00")
        assert result.exit_code == 0, result.output
        assert "Room A" in result.output
        assert "free" in result.output

    def test_seat_availability(self, run):
        taken = run("availability", "seat", "Sala 1", "C7", "2025-06-01", "18:30")
        assert taken.exit_code == 2
        free = run("availability", "seat", "Sala 1", "C8", "2025-06-01", "18:30")
        assert free.exit_code == 0


@pytest.mark.usefixtures("logged_in")
class TestRentalAndOccupancyCommands:
    RENTAL = [
        "-s", "sala_id=1",
        "-s", "nombre_evento=Boda Ruiz",
        "-s", "fecha_hora_inicio=2025-06-20T10:00:00",
        "-s", "fecha_hora_fin=2025-06-20T12:00:00",
    ]

    def test_create_rental_prices_it(self, run, backend):
        result = run("create", "rentals", *self.RENTAL)
        assert result.exit_code == 0, result.output
        stored = backend["store"].tables["renta_sala"][-1]
        assert stored["precio_total"] == "120.00"
        assert stored["estado_renta"] == "Pendiente"

    def test_search_rentals(self, run):
        assert run("create", "rentals", *self.RENTAL).exit_code == 0

        result = run("search-rentals", "ruiz", "--format", "json")
        assert result.exit_code == 0, result.output
        assert [r["nombre_evento"] for r in json.loads(result.output)] == ["Boda Ruiz"]

        result = run("search-rentals", "congreso")
        assert result.exit_code == 0
        assert "(0)" in result.output

    def test_rental_quote(self, run):
        result = run("rental-quote", "1", "2025-06-20 10:00", "2025-06-20 13:00", "--event", "fiesta")
        assert result.exit_code == 0, result.output
        assert "225.00" in result.output

    def test_rental_quote_for_unknown_room(self, run):
        result = run("rental-quote", "9", "2025-06-20 10:00", "2025-06-20 13:00")
        assert result.exit_code == 1
        assert "No room" in result.output

    def test_room_occupancy_stats(self, run):
        result = run("stats", "rooms", "--format", "json")
        assert result.exit_code == 0, result.output
        [room] = json.loads(result.output)
        assert room["nombre"] == "Room A"
        assert room["total_asientos"] == 0

        result = run("stats", "rooms")
        assert result.exit_code == 0
        assert "room occupancy" in result.output

    def test_box_office_stats(self, run):
        result = run("stats", "box-office", "--format", "json")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"active": 1, "used": 0, "cancelled": 0, "total": 1}
