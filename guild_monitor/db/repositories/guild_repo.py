"""
Repository for configured guilds.

Guild CRUD belongs to the configuration layer; the monitor only needs to
seed guilds from config, look them up for roster syncs, and stamp
``last_sync_at``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.models.guild import Guild
from guild_monitor.taxonomy.roster_taxonomy import GuildType
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class GuildRepository(BaseRepository):
    """Read/write access to the ``guilds`` table."""

    def upsert(self, guild: Guild) -> int:
        """Insert a guild or update type/active flag of an existing ``(name, world)``.

        Returns:
            The ``guild_id`` (existing or new).
        """
        self.execute(
            """
            INSERT INTO guilds (name, world, guild_type, is_active)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name, world) DO UPDATE SET
                guild_type = excluded.guild_type,
                is_active  = excluded.is_active;
            """,
            (guild.name, guild.world, guild.guild_type.value, int(guild.is_active)),
        )
        row = self.fetchone(
            "SELECT guild_id FROM guilds WHERE name = ? AND world = ?;",
            (guild.name, guild.world),
        )
        assert row is not None
        return int(row["guild_id"])

    def get_by_id(self, guild_id: int) -> Optional[Guild]:
        row = self.fetchone("SELECT * FROM guilds WHERE guild_id = ?;", (guild_id,))
        return _row_to_guild(row) if row else None

    def get_active(self) -> list[Guild]:
        """Fetch all active guilds ordered by world, then name."""
        rows = self.fetchall(
            "SELECT * FROM guilds WHERE is_active = 1 ORDER BY world, name;"
        )
        return [_row_to_guild(r) for r in rows]

    def set_active(self, guild_id: int, is_active: bool) -> None:
        self.execute(
            "UPDATE guilds SET is_active = ? WHERE guild_id = ?;",
            (int(is_active), guild_id),
        )

    def touch_last_sync(self, guild_id: int, synced_at: datetime) -> None:
        self.execute(
            "UPDATE guilds SET last_sync_at = ? WHERE guild_id = ?;",
            (to_db_timestamp(synced_at), guild_id),
        )


def _row_to_guild(row: sqlite3.Row) -> Guild:
    """Convert a ``sqlite3.Row`` from ``guilds`` to a ``Guild``."""
    return Guild(
        guild_id=row["guild_id"],
        name=row["name"],
        world=row["world"],
        guild_type=GuildType(row["guild_type"]),
        is_active=bool(row["is_active"]),
        last_sync_at=from_db_timestamp(row["last_sync_at"]),
    )
