"""Local persisted key-value state backed by a DuckDB file.

The command line counterpart of browser local storage: string keys mapped to
string values, surviving between invocations.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Optional

import duckdb

from .schema import StateSchema

MEMORY_PATH = ":memory:"


def get_default_state_path() -> Path:
    """Get default state database path.

    Returns:
        Path to state database file
    """
    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))

    return base / "cine-admin" / "state.duckdb"


class LocalStateStore:
    """Key-value store persisted in DuckDB."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize state store.

        Args:
            db_path: Path to DuckDB file, ``:memory:`` for a throwaway store
                (default: ~/.cache/cine-admin/state.duckdb)
        """
        if db_path == MEMORY_PATH:
            self.db_path: Optional[Path] = None
        else:
            self.db_path = Path(db_path).expanduser() if db_path else get_default_state_path()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection."""
        if self._conn is None:
            target = str(self.db_path) if self.db_path else MEMORY_PATH
            self._conn = duckdb.connect(target)
            if StateSchema.needs_migration(self._conn):
                StateSchema.migrate(self._conn)
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "LocalStateStore":
        with self._lock:
            self._get_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # === Raw string API ===

    def get_item(self, key: str) -> Optional[str]:
        """Get the value stored under ``key`` or None."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT value FROM local_storage WHERE key = ?", [key]
            ).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        with self._lock:
            self._get_connection().execute(
                """
                INSERT OR REPLACE INTO local_storage (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                [key, value],
            )

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._get_connection().execute(
                "DELETE FROM local_storage WHERE key = ?", [key]
            )

    # === JSON helpers ===

    def get_json(self, key: str) -> Any:
        """Get a JSON-encoded value, or None when absent or unreadable."""
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, default=str))
