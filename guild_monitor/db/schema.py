"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Table creation order respects foreign key dependencies:
  1. guilds              (no FKs)
  2. tracked_players     (→ guilds)
  3. death_events        (→ tracked_players)
  4. online_transitions  (→ tracked_players)
  5. notifications       (→ guilds, death_events)
  6. api_usage           (no FKs)
  7. task_runs           (no FKs)

Uniqueness the monitor relies on:
  - ``tracked_players(name, world)``   case-insensitive character identity
  - ``death_events(player_id, occurred_at)``  death dedup key
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_GUILDS = """
CREATE TABLE IF NOT EXISTS guilds (
    guild_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT    NOT NULL COLLATE NOCASE,
    world         TEXT    NOT NULL COLLATE NOCASE,
    guild_type    TEXT    NOT NULL DEFAULT 'ALLY',
    is_active     INTEGER NOT NULL DEFAULT 1,
    last_sync_at  TEXT,
    created_at    TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (name, world)
);
"""

_DDL_TRACKED_PLAYERS = """
CREATE TABLE IF NOT EXISTS tracked_players (
    player_id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name                 TEXT    NOT NULL COLLATE NOCASE,
    world                TEXT    NOT NULL COLLATE NOCASE,
    guild_id             INTEGER REFERENCES guilds(guild_id),
    player_type          TEXT    NOT NULL DEFAULT 'GUILD_MEMBER',
    level                INTEGER NOT NULL DEFAULT 1,
    vocation             TEXT    NOT NULL DEFAULT 'None',
    is_online            INTEGER NOT NULL DEFAULT 0,
    last_seen_at         TEXT,
    last_death_check_at  TEXT    NOT NULL DEFAULT '1970-01-01T00:00:00+00:00',
    created_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (name, world)
);
"""

_DDL_TRACKED_PLAYERS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_players_world
    ON tracked_players(world);
CREATE INDEX IF NOT EXISTS idx_players_guild
    ON tracked_players(guild_id);
"""

_DDL_DEATH_EVENTS = """
CREATE TABLE IF NOT EXISTS death_events (
    death_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    player_id       INTEGER NOT NULL REFERENCES tracked_players(player_id),
    occurred_at     TEXT    NOT NULL,
    level_at_death  INTEGER NOT NULL,
    killers_json    TEXT    NOT NULL DEFAULT '[]',
    classification  TEXT    NOT NULL,
    raw_reason      TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (player_id, occurred_at)
);
"""

_DDL_DEATH_EVENTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_deaths_occurred
    ON death_events(occurred_at);
"""

_DDL_ONLINE_TRANSITIONS = """
CREATE TABLE IF NOT EXISTS online_transitions (
    transition_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    player_id            INTEGER NOT NULL REFERENCES tracked_players(player_id),
    is_online            INTEGER NOT NULL DEFAULT 1,
    level_at_transition  INTEGER NOT NULL,
    recorded_at          TEXT    NOT NULL
);
"""

_DDL_ONLINE_TRANSITIONS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_transitions_recorded
    ON online_transitions(recorded_at);
CREATE INDEX IF NOT EXISTS idx_transitions_player
    ON online_transitions(player_id, recorded_at);
"""

_DDL_NOTIFICATIONS = """
CREATE TABLE IF NOT EXISTS notifications (
    notification_id  INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id         INTEGER REFERENCES guilds(guild_id),
    death_id         INTEGER REFERENCES death_events(death_id),
    kind             TEXT    NOT NULL,
    message          TEXT    NOT NULL,
    is_read          INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT    NOT NULL
);
"""

_DDL_API_USAGE = """
CREATE TABLE IF NOT EXISTS api_usage (
    usage_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    endpoint      TEXT    NOT NULL,
    status_code   INTEGER,
    duration_ms   REAL    NOT NULL,
    requested_at  TEXT    NOT NULL
);
"""

_DDL_TASK_RUNS = """
CREATE TABLE IF NOT EXISTS task_runs (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    task_name       TEXT    NOT NULL,
    status          TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT
);
"""

_DDL_TASK_RUNS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_task_runs_task_started
    ON task_runs(task_name, started_at);
"""

# ── Ordered list of all DDL to apply ──────────────────────────────────────────

_ALL_DDL: list[str] = [
    _DDL_GUILDS,
    _DDL_TRACKED_PLAYERS,
    _DDL_TRACKED_PLAYERS_INDEXES,
    _DDL_DEATH_EVENTS,
    _DDL_DEATH_EVENTS_INDEXES,
    _DDL_ONLINE_TRANSITIONS,
    _DDL_ONLINE_TRANSITIONS_INDEXES,
    _DDL_NOTIFICATIONS,
    _DDL_API_USAGE,
    _DDL_TASK_RUNS,
    _DDL_TASK_RUNS_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "guilds",
    "tracked_players",
    "death_events",
    "online_transitions",
    "notifications",
    "api_usage",
    "task_runs",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of index names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
