"""
SQLite units of work for the monitoring loops.

The death and presence loops, the usage recorder and the CLI all share one
database file, and the loops run their writes in worker threads. Every
write therefore goes through ``get_connection(..., immediate=True)``, which
takes the write lock with ``BEGIN IMMEDIATE`` up front. Under WAL a deferred
transaction that upgrades from reader to writer after another thread
committed fails with ``SQLITE_BUSY`` at once; an immediate one waits out
``busy_timeout_ms`` instead.

One unit of work is one connection: one player's deaths, one world's
presence flip, one usage row. Clean exit commits, an exception rolls back
only that unit.

Usage::

    with open_unit(config.database, immediate=True) as conn:
        TrackedPlayerRepository(conn).advance_watermark(player_id, stamp)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Optional

if TYPE_CHECKING:
    from guild_monitor.config import DatabaseConfig

logger = logging.getLogger(__name__)

# journal_mode=WAL is persistent in the file; switch each path once per process
_wal_paths: set[str] = set()
_wal_lock = threading.Lock()


def _ensure_wal(conn: sqlite3.Connection, db_path: str) -> None:
    if db_path == ":memory:":
        return
    with _wal_lock:
        if db_path in _wal_paths:
            return
        mode = conn.execute("PRAGMA journal_mode = WAL;").fetchone()[0]
        if str(mode).lower() != "wal":
            logger.warning("Could not enable WAL on %s (journal_mode=%s).", db_path, mode)
        _wal_paths.add(db_path)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
    immediate: bool = False,
) -> Generator[sqlite3.Connection, None, None]:
    """Open one unit of work against ``db_path``.

    Args:
        db_path: SQLite file; parent directories are created on demand.
        wal_mode: Switch the file to WAL on first use in this process.
        busy_timeout_ms: How long to wait on a locked database.
        immediate: Take the write lock before yielding (``BEGIN IMMEDIATE``).

    Yields:
        A connection with foreign keys on and ``sqlite3.Row`` rows.

    Raises:
        sqlite3.OperationalError: If the file cannot be opened or the lock
            is not obtained within ``busy_timeout_ms``.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # check_same_thread off: a unit opened in a worker thread is closed there too
    conn = sqlite3.connect(
        db_path, timeout=busy_timeout_ms / 1000, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        if wal_mode:
            _ensure_wal(conn, db_path)
        if immediate:
            conn.execute("BEGIN IMMEDIATE;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def open_unit(
    database: "DatabaseConfig",
    db_path: Optional[str] = None,
    immediate: bool = False,
):
    """``get_connection`` with the settings of a ``DatabaseConfig`` section."""
    return get_connection(
        db_path or database.db_path,
        wal_mode=database.wal_mode,
        busy_timeout_ms=database.busy_timeout_ms,
        immediate=immediate,
    )


def ping(conn: sqlite3.Connection) -> bool:
    """Trivial round-trip query used by the health probe."""
    row = conn.execute("SELECT 1 AS ok;").fetchone()
    return row is not None and row["ok"] == 1
