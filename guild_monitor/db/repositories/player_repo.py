"""
Repository for tracked players.

This is the store contract both loops consume:
  - ``get_active(world=None)``  — players of active guilds, optionally per world.
  - ``get_active_worlds()``     — distinct worlds with at least one such player.
  - ``advance_watermark()``     — death ingestion's only write to a player.
  - ``mark_world_offline()`` / ``mark_online()`` — the presence loop's two phases.

Watermark monotonicity is enforced in SQL as well as by the pipeline: the
update only applies when the new value is later than the stored one.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.models.player import TrackedPlayer
from guild_monitor.taxonomy.roster_taxonomy import PlayerType
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

_ACTIVE_PLAYERS_SQL = """
    SELECT p.* FROM tracked_players p
    JOIN guilds g ON g.guild_id = p.guild_id
    WHERE g.is_active = 1
"""


class TrackedPlayerRepository(BaseRepository):
    """Read/write access to the ``tracked_players`` table."""

    def insert(self, player: TrackedPlayer) -> int:
        """Insert a new tracked player and return its ``player_id``."""
        self.execute(
            """
            INSERT INTO tracked_players (
                name, world, guild_id, player_type, level, vocation,
                is_online, last_seen_at, last_death_check_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                player.name,
                player.world,
                player.guild_id,
                player.player_type.value,
                player.level,
                player.vocation,
                int(player.is_online),
                to_db_timestamp(player.last_seen_at) if player.last_seen_at else None,
                to_db_timestamp(player.last_death_check_at),
            ),
        )
        return self.last_insert_rowid()

    def upsert_roster_member(
        self,
        name: str,
        world: str,
        guild_id: int,
        player_type: PlayerType,
        level: int,
        vocation: str,
    ) -> tuple[int, bool]:
        """Create or refresh a player from a guild roster entry.

        Existing players keep their online flag, last-seen time and watermark;
        only guild membership, type, level and vocation are refreshed.

        Returns:
            ``(player_id, created)``.
        """
        existing = self.get_by_name(name, world)
        if existing is not None:
            assert existing.player_id is not None
            self.execute(
                """
                UPDATE tracked_players SET
                    guild_id    = ?,
                    player_type = ?,
                    level       = ?,
                    vocation    = ?,
                    updated_at  = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
                WHERE player_id = ?;
                """,
                (guild_id, player_type.value, level, vocation, existing.player_id),
            )
            return existing.player_id, False

        player_id = self.insert(
            TrackedPlayer(
                name=name,
                world=world,
                guild_id=guild_id,
                player_type=player_type,
                level=level,
                vocation=vocation,
            )
        )
        return player_id, True

    def get_by_id(self, player_id: int) -> Optional[TrackedPlayer]:
        row = self.fetchone(
            "SELECT * FROM tracked_players WHERE player_id = ?;", (player_id,)
        )
        return _row_to_player(row) if row else None

    def get_by_name(self, name: str, world: str) -> Optional[TrackedPlayer]:
        """Case-insensitive lookup by ``(name, world)``."""
        row = self.fetchone(
            "SELECT * FROM tracked_players WHERE name = ? AND world = ?;",
            (name, world),
        )
        return _row_to_player(row) if row else None

    def get_active(self, world: Optional[str] = None) -> list[TrackedPlayer]:
        """Fetch players whose guild is active, optionally filtered by world."""
        if world is None:
            rows = self.fetchall(_ACTIVE_PLAYERS_SQL + " ORDER BY p.world, p.name;")
        else:
            rows = self.fetchall(
                _ACTIVE_PLAYERS_SQL + " AND p.world = ? ORDER BY p.name;", (world,)
            )
        return [_row_to_player(r) for r in rows]

    def get_active_worlds(self) -> list[str]:
        """Distinct worlds that have at least one active tracked player."""
        rows = self.fetchall(
            """
            SELECT DISTINCT p.world AS world FROM tracked_players p
            JOIN guilds g ON g.guild_id = p.guild_id
            WHERE g.is_active = 1
            ORDER BY p.world;
            """
        )
        return [r["world"] for r in rows]

    def advance_watermark(self, player_id: int, watermark: datetime) -> bool:
        """Move the death watermark forward; never moves it backwards.

        Returns:
            ``True`` if the stored watermark changed.
        """
        stamp = to_db_timestamp(watermark)
        cursor = self.execute(
            """
            UPDATE tracked_players
            SET last_death_check_at = ?
            WHERE player_id = ? AND last_death_check_at < ?;
            """,
            (stamp, player_id, stamp),
        )
        return cursor.rowcount > 0

    def mark_world_offline(self, world: str) -> int:
        """Phase one of reconciliation: every player in ``world`` goes offline."""
        cursor = self.execute(
            "UPDATE tracked_players SET is_online = 0 WHERE world = ?;", (world,)
        )
        return cursor.rowcount

    def mark_online(self, player_ids: list[int], seen_at: datetime) -> int:
        """Phase two of reconciliation: flag roster-confirmed players online."""
        if not player_ids:
            return 0
        stamp = to_db_timestamp(seen_at)
        self.executemany(
            "UPDATE tracked_players SET is_online = 1, last_seen_at = ? WHERE player_id = ?;",
            [(stamp, pid) for pid in player_ids],
        )
        return len(player_ids)

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM tracked_players;")
        assert row is not None
        return int(row["n"])


def _row_to_player(row: sqlite3.Row) -> TrackedPlayer:
    """Convert a ``sqlite3.Row`` from ``tracked_players`` to a ``TrackedPlayer``."""
    return TrackedPlayer(
        player_id=row["player_id"],
        name=row["name"],
        world=row["world"],
        guild_id=row["guild_id"],
        player_type=PlayerType(row["player_type"]),
        level=row["level"],
        vocation=row["vocation"],
        is_online=bool(row["is_online"]),
        last_seen_at=from_db_timestamp(row["last_seen_at"]),
        last_death_check_at=from_db_timestamp(row["last_death_check_at"]),
    )
