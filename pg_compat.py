"""PostgreSQL compatibility layer for the hosted database.

Wraps psycopg2 so store code written against the sqlite3 API runs unchanged
when DATABASE_URL points at the hosted PostgreSQL instance:
  - ? placeholders → %s (literal % escaped)
  - INSERT OR IGNORE → INSERT ... ON CONFLICT DO NOTHING
  - executescript() → split and execute
  - rows → dict-like PgRow objects
  - lastrowid → INSERT ... RETURNING id
"""

from __future__ import annotations

import logging
import re
from typing import Any

import psycopg2

logger = logging.getLogger(__name__)

_IGNORABLE_DDL_ERRORS = ("already exists", "duplicate column")


class PgRow:
    """Dict-like row that mimics sqlite3.Row."""

    def __init__(self, columns: list[str], values: tuple):
        self._data = dict(zip(columns, values))

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return list(self._data.values())[key]
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __iter__(self):
        return iter(self._data.values())

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __repr__(self) -> str:
        return f"PgRow({self._data})"


def translate_sql(sql: str) -> str:
    """Translate a SQLite statement to its PostgreSQL form."""
    translated = sql.replace("%", "%%").replace("?", "%s")

    if re.search(r"INSERT\s+OR\s+IGNORE\s+INTO", translated, flags=re.IGNORECASE):
        translated = re.sub(
            r"INSERT\s+OR\s+IGNORE\s+INTO", "INSERT INTO", translated, flags=re.IGNORECASE,
        )
        if "ON CONFLICT" not in translated.upper():
            translated = translated.rstrip().rstrip(";") + " ON CONFLICT DO NOTHING"

    return translated


def translate_schema(sql: str) -> str:
    """Translate SQLite DDL to PostgreSQL DDL."""
    translated = re.sub(
        r"(\w+)\s+INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        r"\1 SERIAL PRIMARY KEY",
        sql,
        flags=re.IGNORECASE,
    )
    return re.sub(r"PRAGMA\s+\w+\s*=\s*\w+\s*;?", "", translated, flags=re.IGNORECASE)


class PgCursorWrapper:
    """Wraps a psycopg2 cursor to match the sqlite3.Cursor interface."""

    def __init__(self, cursor):
        self._cursor = cursor
        self._last_id = None

    @property
    def lastrowid(self):
        return self._last_id

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def execute(self, sql: str, params: tuple | list = ()) -> "PgCursorWrapper":
        translated = translate_sql(sql)
        self._last_id = None

        # Every table carries an id column, so RETURNING id is always valid
        if translated.lstrip().upper().startswith("INSERT") and "RETURNING" not in translated.upper():
            translated = translated.rstrip().rstrip(";") + " RETURNING id"
            self._cursor.execute(translated, tuple(params))
            row = self._cursor.fetchone()
            if row:
                self._last_id = row[0]
            return self

        self._cursor.execute(translated, tuple(params))
        return self

    def _columns(self) -> list[str]:
        return [desc[0] for desc in self._cursor.description or ()]

    def fetchone(self) -> PgRow | None:
        row = self._cursor.fetchone()
        if row is None:
            return None
        return PgRow(self._columns(), row)

    def fetchall(self) -> list[PgRow]:
        if not self._cursor.description:
            return []
        columns = self._columns()
        return [PgRow(columns, row) for row in self._cursor.fetchall()]

    def close(self):
        self._cursor.close()


class PgConnectionWrapper:
    """Wraps a psycopg2 connection to match the sqlite3.Connection interface."""

    IntegrityError = psycopg2.IntegrityError

    def __init__(self, conn):
        self._conn = conn
        self._conn.autocommit = False
        self.row_factory = None

    def execute(self, sql: str, params: tuple | list = ()) -> PgCursorWrapper:
        cursor = PgCursorWrapper(self._conn.cursor())
        cursor.execute(sql, params)
        return cursor

    def executescript(self, sql: str) -> None:
        """Run each statement of a DDL script, skipping already-applied ones."""
        statements = [s.strip() for s in translate_schema(sql).split(";") if s.strip()]
        cursor = self._conn.cursor()
        for stmt in statements:
            try:
                cursor.execute(stmt)
            except psycopg2.Error as e:
                if not any(phrase in str(e).lower() for phrase in _IGNORABLE_DDL_ERRORS):
                    raise
                self._conn.rollback()
                logger.debug("Skipping DDL statement: %s", e)
        cursor.close()

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def connect_pg(database_url: str) -> PgConnectionWrapper:
    """Create a PostgreSQL connection with a sqlite3-compatible interface."""
    return PgConnectionWrapper(psycopg2.connect(database_url))


def is_postgres_url(url: str) -> bool:
    """Check if a database URL is a PostgreSQL URL."""
    return url.startswith("postgresql://") or url.startswith("postgres://")
