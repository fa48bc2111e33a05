"""Tests for table rendering, normalization helpers and error reporting."""

import io
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from rich.console import Console

from cine_admin.models.records import Movie, Rental, User
from cine_admin.models.statistics import UserStatistics
from cine_admin.ui.tables import build_record_table, build_statistics_table, format_cell, resolve
from cine_admin.utils.error_handling import (
    ErrorHandler,
    RemoteStoreError,
    WriteError,
    create_user_friendly_error,
)
from cine_admin.utils.normalization import (
    coerce_value,
    parse_assignments,
    parse_timestamp,
    split_genres,
)


def render(renderable, width=160):
    console = Console(file=io.StringIO(), width=width)
    console.print(renderable)
    return console.file.getvalue()


class TestNormalization:
    def test_parse_timestamp(self):
        assert parse_timestamp("2025-06-01T18:00:00Z") == datetime(2025, 6, 1, 18, tzinfo=timezone.utc)
        assert parse_timestamp("2025-06-01 18:00:00").tzinfo == timezone.utc
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None

    def test_split_genres(self):
        assert split_genres("Acción, Drama ,") == ["Acción", "Drama"]
        assert split_genres(["Terror", " "]) == ["Terror"]
        assert split_genres(None) == []

    def test_coerce_value(self):
        assert coerce_value("12") == 12
        assert coerce_value("4.5") == 4.5
        assert coerce_value("sí") is True
        assert coerce_value("no") is False
        assert coerce_value("null") is None
        assert coerce_value('["a"]') == ["a"]
        assert coerce_value("2025-06-01") == "2025-06-01"

    def test_parse_assignments(self):
        assert parse_assignments(["titulo=Dune: Part Two", "duracion=166"]) == {
            "titulo": "Dune: Part Two",
            "duracion": 166,
        }
        with pytest.raises(ValueError):
            parse_assignments(["=x"])


class TestTables:
    def test_resolve_dotted_paths(self):
        user = User(cedula="1", nombres="Ana", apellidos="Ruiz", email="a@x.test",
                    rol={"nombre": "administrador"})
        assert resolve(user, "rol.nombre") == "administrador"
        assert resolve(user, "metrics.total_boletos_comprados") == 0
        assert resolve({"a": {"b": 1}}, "a.b") == 1
        assert resolve(user, "missing.path") is None

    def test_format_cell(self):
        assert format_cell(Decimal("1234.5")) == "1,234.50"
        assert format_cell(True) == "yes"
        assert format_cell(datetime(2025, 6, 1, 18, 5)) == "2025-06-01 18:05"
        assert "-" in format_cell(None)

    def test_record_table(self):
        movies = [Movie(pelicula_id=i, titulo=f"Movie {i}", duracion=90) for i in range(1, 4)]
        output = render(build_record_table("movies", movies, max_rows=2))

        assert "movies (3)" in output
        assert "Movie 2" in output
        assert "Movie 3" not in output
        assert "showing 2 of 3" in output

    def test_nested_columns(self):
        rental = Rental(
            sala_id=1, nombre_evento="Boda", fecha_hora_inicio="2025-06-20T10:00:00",
            fecha_hora_fin="2025-06-20T14:00:00", sala={"nombre": "Sala Premium"},
            metrics={"duracion_horas": 4, "costo_por_hora": 50, "dias_restantes": 5},
        )
        output = render(build_record_table("rentals", [rental]))
        assert "Sala Premium" in output
        assert "4.00" in output

    def test_statistics_table(self):
        output = render(build_statistics_table("users", UserStatistics(total_usuarios=3)))
        assert "total usuarios" in output


class TestErrorReporting:
    def test_backend_message_is_verbatim(self):
        error = RemoteStoreError('insert or update on table "boleto" violates foreign key constraint')
        assert create_user_friendly_error(error) == error.message

    def test_alert_panel(self):
        console = Console(file=io.StringIO(), width=160)
        ErrorHandler(console=console).alert(WriteError("constraint violation"), title="Could not save changes")
        output = console.file.getvalue()
        assert "Could not save changes" in output
        assert "constraint violation" in output

    def test_verbose_alert_shows_details(self):
        console = Console(file=io.StringIO(), width=160)
        ErrorHandler(verbose=True, console=console).alert(ValueError("bad"))
        assert "Details" in console.file.getvalue()
