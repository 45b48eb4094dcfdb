"""
Base repository providing shared SQLite execution helpers.

All repositories inherit from ``BaseRepository`` and receive a
``sqlite3.Connection`` at construction time. The connection is opened and
managed by the caller (typically via ``get_connection()``), so a
repository never commits on its own.

Design:
  - No ORM — all SQL is explicit and lives in repository methods.
  - Repositories speak Pydantic models, not raw dicts.
  - Timestamps cross the boundary through ``to_db_timestamp`` /
    ``from_db_timestamp`` so string comparison in SQL stays chronological.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional

from guild_monitor.utils.time_utils import to_db_timestamp

logger = logging.getLogger(__name__)


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    """Return ``True`` if ``exc`` was raised by a UNIQUE constraint."""
    return "UNIQUE constraint failed" in str(exc)


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> sqlite3.Cursor:
        """Execute a single SQL statement with ``?`` or ``:name`` placeholders."""
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(
        self,
        sql: str,
        params_list: list[tuple[Any, ...] | dict[str, Any]],
    ) -> sqlite3.Cursor:
        """Execute a SQL statement for each element in ``params_list``."""
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    def last_insert_rowid(self) -> int:
        """Return the rowid of the last successful INSERT."""
        row = self.fetchone("SELECT last_insert_rowid() AS rowid;")
        assert row is not None
        return int(row["rowid"])

    def _delete_before(self, table: str, column: str, cutoff: datetime, extra_where: str = "") -> int:
        """Delete rows of ``table`` whose ``column`` is older than ``cutoff``.

        ``table``, ``column`` and ``extra_where`` are fixed strings supplied by
        subclasses, never user input.

        Returns:
            Number of rows deleted.
        """
        sql = f"DELETE FROM {table} WHERE {column} < ?"
        if extra_where:
            sql += f" AND {extra_where}"
        cursor = self.execute(sql + ";", (to_db_timestamp(cutoff),))
        return cursor.rowcount
