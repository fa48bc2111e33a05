"""Shared fixtures: in-memory stand-ins for the remote store and change feed."""

import copy
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from cine_admin.cache.local_state import LocalStateStore
from cine_admin.models.realtime import ChangeEvent, ChangeType
from cine_admin.store.realtime import ChangeFeed, ChangeSubscription
from cine_admin.utils.error_handling import RemoteStoreError
from cine_admin.utils.normalization import parse_timestamp

# Primary key per table, used to assign ids on insert
TABLE_KEYS = {
    "pelicula": "pelicula_id",
    "sala": "sala_id",
    "asiento": "asiento_id",
    "funcion": "funcion_id",
    "boleto": "boleto_id",
    "usuario_boleto": "usuario_boleto_id",
    "renta_sala": "renta_id",
    "usuario": "usuario_id",
    "rol": "rol_id",
    "tickets": "id",
}


def _comparable(row_value: Any, value: Any):
    """Bring a row value and a filter value to comparable types."""
    if isinstance(value, datetime):
        return parse_timestamp(row_value), value
    if isinstance(value, str) and isinstance(row_value, (int, float, Decimal)):
        return str(row_value), value
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        if isinstance(row_value, str):
            try:
                return Decimal(row_value), Decimal(str(value))
            except ArithmeticError:
                return row_value, str(value)
        return row_value, value
    if isinstance(value, date):
        return row_value, value.isoformat()
    return row_value, value


def _matches(row: Dict[str, Any], flt) -> bool:
    row_value = row.get(flt.column)
    if flt.op == "in":
        return any(_comparable(row_value, v)[0] == _comparable(row_value, v)[1] for v in flt.value)
    if flt.op == "is":
        return row_value is flt.value
    left, right = _comparable(row_value, flt.value)
    if flt.op == "eq":
        return left == right
    if flt.op == "neq":
        return left != right
    if left is None:
        return False
    if flt.op == "gt":
        return left > right
    if flt.op == "gte":
        return left >= right
    if flt.op == "lt":
        return left < right
    if flt.op == "lte":
        return left <= right
    raise ValueError(f"Unsupported operator in fake store: {flt.op}")


class FakeRemoteStore:
    """Dict-of-lists remote store with the RemoteStore call surface.

    Select expressions are ignored: rows are returned as stored, so tests put
    embeds straight into the rows they seed.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.calls: List[tuple] = []
        self.errors: Dict[str, RemoteStoreError] = {}
        self.on_select: Optional[Callable[[str], None]] = None
        self.closed = False

    # === Test controls ===

    def fail(self, method: str, message: str = "boom", code: Optional[str] = None) -> None:
        """Make every call of ``method`` fail until ``recover`` is called."""
        self.errors[method] = RemoteStoreError(message, status_code=400, code=code)

    def recover(self, method: Optional[str] = None) -> None:
        if method is None:
            self.errors.clear()
        else:
            self.errors.pop(method, None)

    def count_calls(self, method: str, table: Optional[str] = None) -> int:
        return sum(
            1 for m, t in self.calls if m == method and (table is None or t == table)
        )

    def _enter(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        if method in self.errors:
            raise self.errors[method]

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _next_id(self, table: str, key: str) -> int:
        ids = [row.get(key) for row in self._rows(table) if isinstance(row.get(key), int)]
        return max(ids, default=0) + 1

    # === RemoteStore surface ===

    def select(self, table, columns="*", filters=None, order=None, limit=None):
        self._enter("select", table)
        rows = [row for row in self._rows(table) if all(_matches(row, f) for f in filters or ())]
        if self.on_select is not None:
            # Runs after the rows are read, like work landing mid-request
            self.on_select(table)
        for column, ascending in reversed(list(order or ())):
            rows.sort(
                key=lambda row: (
                    row.get(column) is None,
                    row.get(column) if row.get(column) is not None else 0,
                ),
                reverse=not ascending,
            )
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def select_one(self, table, columns="*", filters=None):
        rows = self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    def count(self, table, filters=None):
        return len(self.select(table, filters=filters))

    def insert(self, table, values, columns=None):
        self._enter("insert", table)
        key = TABLE_KEYS.get(table, "id")
        inserted = []
        for row in values if isinstance(values, list) else [values]:
            row = dict(row)
            if row.get(key) is None:
                row[key] = self._next_id(table, key)
            self._rows(table).append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def update(self, table, values, filters, columns=None):
        self._enter("update", table)
        updated = []
        for row in self._rows(table):
            if all(_matches(row, f) for f in filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        self._enter("delete", table)
        kept, deleted = [], []
        for row in self._rows(table):
            (deleted if all(_matches(row, f) for f in filters) else kept).append(row)
        self.tables[table] = kept
        return deleted

    def close(self):
        self.closed = True


class FakeChangeFeed(ChangeFeed):
    """Change feed whose notifications are pushed by the test."""

    def __init__(self):
        self.subscriptions: Dict[str, List[ChangeSubscription]] = {}
        self.closed = False

    def subscribe(self, table, callback):
        subscription = ChangeSubscription(self, table, callback)
        self.subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription):
        subs = self.subscriptions.get(subscription.table, [])
        if subscription in subs:
            subs.remove(subscription)

    def close(self):
        self.closed = True
        self.subscriptions.clear()

    def subscriber_count(self, table: str) -> int:
        return len(self.subscriptions.get(table, []))

    def emit(self, table: str, event_type: str, new=None, old=None) -> ChangeEvent:
        """Deliver a change notification to every subscriber of ``table``."""
        event = ChangeEvent(
            event_type=ChangeType(event_type), table=table, new=new, old=old
        )
        for subscription in list(self.subscriptions.get(table, [])):
            subscription.callback(event)
        return event


@pytest.fixture
def make_store():
    return FakeRemoteStore


@pytest.fixture
def store():
    return FakeRemoteStore()


@pytest.fixture
def feed():
    return FakeChangeFeed()


@pytest.fixture
def state():
    with LocalStateStore(":memory:") as local_state:
        yield local_state


class Recorder:
    """Collects every value a stream hands out."""

    def __init__(self):
        self.values: List[Any] = []
        self.completed = 0

    def __call__(self, value):
        self.values.append(value)

    def complete(self):
        self.completed += 1

    @property
    def last(self):
        return self.values[-1]


@pytest.fixture
def recorder():
    return Recorder()
