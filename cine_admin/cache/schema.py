"""DuckDB schema for the local state database.

Holds the key-value table that plays the role of browser local storage
(session keys) plus a meta table carrying the schema version.
"""

from typing import Optional

import duckdb


class StateSchema:
    """Manages DuckDB schema for the local state database."""

    SCHEMA_VERSION = 1

    CREATE_STATE_META = """
    CREATE TABLE IF NOT EXISTS state_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    CREATE_LOCAL_STORAGE = """
    CREATE TABLE IF NOT EXISTS local_storage (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    @classmethod
    def create_schema(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Create all tables.

        Args:
            conn: DuckDB connection
        """
        conn.execute(cls.CREATE_STATE_META)
        conn.execute(cls.CREATE_LOCAL_STORAGE)
        cls._set_version(conn)

    @classmethod
    def _set_version(cls, conn: duckdb.DuckDBPyConnection) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO state_meta (key, value, updated_at)
            VALUES ('schema_version', ?, CURRENT_TIMESTAMP)
            """,
            [str(cls.SCHEMA_VERSION)],
        )

    @classmethod
    def get_schema_version(cls, conn: duckdb.DuckDBPyConnection) -> Optional[int]:
        """Get current schema version from database.

        Args:
            conn: DuckDB connection

        Returns:
            Schema version or None if not set
        """
        try:
            result = conn.execute(
                "SELECT value FROM state_meta WHERE key = 'schema_version'"
            ).fetchone()
            if result:
                return int(result[0])
        except duckdb.CatalogException:
            pass
        return None

    @classmethod
    def needs_migration(cls, conn: duckdb.DuckDBPyConnection) -> bool:
        current_version = cls.get_schema_version(conn)
        return current_version is None or current_version < cls.SCHEMA_VERSION

    @classmethod
    def migrate(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Bring the schema to the latest version.

        Args:
            conn: DuckDB connection
        """
        if cls.get_schema_version(conn) is None:
            cls.create_schema(conn)
            return
        cls._set_version(conn)
