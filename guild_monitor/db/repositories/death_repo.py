"""
Repository for death events.

Deduplication contract:
  ``death_events`` carries ``UNIQUE (player_id, occurred_at)``. ``insert()``
  turns a violation of that key into ``PersistenceConflict``;
  ``insert_many()`` treats the conflict as a benign no-op and returns only
  the rows it actually created. Any other integrity error propagates.

Known limitation: two genuinely distinct deaths of one player within the
same second collapse into one row, because upstream offers no death id.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from guild_monitor.db.repositories.base import BaseRepository, is_unique_violation
from guild_monitor.exceptions import PersistenceConflict
from guild_monitor.models.death import DeathEvent
from guild_monitor.taxonomy.death_taxonomy import DeathClassification
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeathStats:
    """Death statistics for one guild over a time window.

    Attributes:
        total:          Deaths in the window.
        pvp:            PVP deaths.
        pve:            PVE deaths.
        pvp_percentage: ``round(100 * pvp / total)``; 0 when there are none.
        by_level:       ``(level, count)`` pairs, highest level first.
    """

    total: int
    pvp: int
    pve: int
    pvp_percentage: int
    by_level: list[tuple[int, int]] = field(default_factory=list)


class DeathEventRepository(BaseRepository):
    """Read/write access to the ``death_events`` table."""

    def insert(self, death: DeathEvent) -> int:
        """Insert one death and return its ``death_id``.

        Raises:
            PersistenceConflict: If ``(player_id, occurred_at)`` already exists.
        """
        try:
            self.execute(
                """
                INSERT INTO death_events (
                    player_id, occurred_at, level_at_death,
                    killers_json, classification, raw_reason
                ) VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    death.player_id,
                    to_db_timestamp(death.occurred_at),
                    death.level_at_death,
                    json.dumps(list(death.killer_names)),
                    death.classification.value,
                    death.raw_reason,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if is_unique_violation(exc):
                raise PersistenceConflict(
                    f"Death for player_id={death.player_id} at "
                    f"{to_db_timestamp(death.occurred_at)} already exists."
                ) from exc
            raise
        return self.last_insert_rowid()

    def insert_many(self, deaths: Iterable[DeathEvent]) -> list[DeathEvent]:
        """Insert deaths, skipping any that already exist.

        Returns:
            The newly created deaths, with ``death_id`` populated.
        """
        created: list[DeathEvent] = []
        for death in deaths:
            try:
                death_id = self.insert(death)
            except PersistenceConflict as exc:
                logger.debug("Skipping duplicate death: %s", exc)
                continue
            created.append(death.model_copy(update={"death_id": death_id}))
        return created

    def get_for_player(self, player_id: int) -> list[DeathEvent]:
        """All deaths of one player, newest first."""
        rows = self.fetchall(
            "SELECT * FROM death_events WHERE player_id = ? ORDER BY occurred_at DESC;",
            (player_id,),
        )
        return [_row_to_death(r) for r in rows]

    def get_recent_for_guild(self, guild_id: int, limit: int = 50) -> list[DeathEvent]:
        """Most recent deaths of a guild's tracked players."""
        rows = self.fetchall(
            """
            SELECT d.* FROM death_events d
            JOIN tracked_players p ON p.player_id = d.player_id
            WHERE p.guild_id = ?
            ORDER BY d.occurred_at DESC
            LIMIT ?;
            """,
            (guild_id, limit),
        )
        return [_row_to_death(r) for r in rows]

    def get_death_stats(self, guild_id: int, since: datetime) -> DeathStats:
        """Aggregate a guild's deaths since ``since``."""
        params = (guild_id, to_db_timestamp(since))
        counts = self.fetchone(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(d.classification = 'PVP'), 0) AS pvp,
                COALESCE(SUM(d.classification = 'PVE'), 0) AS pve
            FROM death_events d
            JOIN tracked_players p ON p.player_id = d.player_id
            WHERE p.guild_id = ? AND d.occurred_at >= ?;
            """,
            params,
        )
        assert counts is not None
        level_rows = self.fetchall(
            """
            SELECT d.level_at_death AS level, COUNT(*) AS n
            FROM death_events d
            JOIN tracked_players p ON p.player_id = d.player_id
            WHERE p.guild_id = ? AND d.occurred_at >= ?
            GROUP BY d.level_at_death
            ORDER BY d.level_at_death DESC;
            """,
            params,
        )
        total = int(counts["total"])
        pvp = int(counts["pvp"])
        return DeathStats(
            total=total,
            pvp=pvp,
            pve=int(counts["pve"]),
            pvp_percentage=round(pvp * 100 / total) if total else 0,
            by_level=[(int(r["level"]), int(r["n"])) for r in level_rows],
        )

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM death_events;")
        assert row is not None
        return int(row["n"])


def _row_to_death(row: sqlite3.Row) -> DeathEvent:
    """Convert a ``sqlite3.Row`` from ``death_events`` to a ``DeathEvent``."""
    return DeathEvent(
        death_id=row["death_id"],
        player_id=row["player_id"],
        occurred_at=from_db_timestamp(row["occurred_at"]),
        level_at_death=row["level_at_death"],
        killer_names=tuple(json.loads(row["killers_json"])),
        classification=DeathClassification(row["classification"]),
        raw_reason=row["raw_reason"],
    )
