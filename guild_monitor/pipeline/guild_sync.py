"""
Guild roster sync: turns an upstream guild member list into tracked players.

This is the manual "sync now" entry point (``Supervisor.sync_guild``) and the
``sync-guild`` / ``sync-all`` CLI commands. Players are never deleted here;
a member who left the guild simply stops being refreshed.

Existing players keep ``is_online``, ``last_seen_at`` and the death
watermark. Only guild membership, player type, level and vocation are
refreshed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.records import GuildDetails
from guild_monitor.config import AppConfig
from guild_monitor.db.repositories.guild_repo import GuildRepository
from guild_monitor.db.repositories.player_repo import TrackedPlayerRepository
from guild_monitor.exceptions import ConfigurationError, GuildMonitorError
from guild_monitor.models.guild import Guild
from guild_monitor.models.meta import TaskRun
from guild_monitor.pipeline.base import MonitorTask
from guild_monitor.taxonomy.roster_taxonomy import PlayerType, normalize_vocation
from guild_monitor.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuildSyncResult:
    """Counts from one guild roster sync."""

    guild_id: int
    guild_name: str
    total: int
    created: int
    updated: int
    failed: int


class GuildSynchronizer(MonitorTask):
    """Fetches guild rosters and upserts their members as tracked players.

    Args:
        config: Application configuration.
        client: Shared game-data client.
        db_path: Overrides ``config.database.db_path``.
    """

    task_name = "guild_sync"

    def __init__(
        self,
        config: AppConfig,
        client: GameDataClient,
        db_path: Optional[str] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.client = client

    async def _execute(self, run: TaskRun) -> int:
        results = await self.sync_all_guilds()
        return sum(r.created + r.updated for r in results)

    async def sync_guild(self, guild_id: int) -> GuildSyncResult:
        """Force an immediate, uncached roster fetch and upsert for one guild.

        Raises:
            ConfigurationError: If the guild id is unknown or the guild lives
                on a different world upstream.
            GameDataError: If the roster cannot be fetched.
        """
        with self.connect() as conn:
            guild = GuildRepository(conn).get_by_id(guild_id)
        if guild is None:
            raise ConfigurationError(f"Unknown guild_id={guild_id}.")

        details = await self.client.fetch_guild_roster(
            guild.name, guild.world, use_cache=False
        )
        created, updated, failed = await asyncio.to_thread(
            self._upsert_members, guild, details
        )

        result = GuildSyncResult(
            guild_id=guild_id,
            guild_name=guild.name,
            total=len(details.members),
            created=created,
            updated=updated,
            failed=failed,
        )
        logger.info(
            "Synced guild %s (%s): %d members | created=%d updated=%d failed=%d",
            guild.name, guild.world, result.total, created, updated, failed,
        )
        return result

    def _upsert_members(self, guild: Guild, details: GuildDetails) -> tuple[int, int, int]:
        """Write one guild's roster in a single unit; returns (created, updated, failed)."""
        assert guild.guild_id is not None
        player_type = PlayerType.for_guild(guild.guild_type)
        created = updated = failed = 0
        with self.connect(immediate=True) as conn:
            players = TrackedPlayerRepository(conn)
            for member in details.members:
                try:
                    _, is_new = players.upsert_roster_member(
                        name=member.name,
                        world=guild.world,
                        guild_id=guild.guild_id,
                        player_type=player_type,
                        level=member.level,
                        vocation=normalize_vocation(member.vocation),
                    )
                except Exception as exc:
                    failed += 1
                    logger.warning(
                        "Failed to sync member %s of %s: %s", member.name, guild.name, exc
                    )
                    continue
                if is_new:
                    created += 1
                else:
                    updated += 1
            GuildRepository(conn).touch_last_sync(guild.guild_id, utcnow())
        return created, updated, failed

    async def sync_all_guilds(self) -> list[GuildSyncResult]:
        """Sync every active guild; one guild's failure does not stop the rest."""
        with self.connect() as conn:
            guilds = GuildRepository(conn).get_active()

        results: list[GuildSyncResult] = []
        for guild in guilds:
            assert guild.guild_id is not None
            try:
                results.append(await self.sync_guild(guild.guild_id))
            except GuildMonitorError as exc:
                logger.error("Guild sync failed for %s (%s): %s", guild.name, guild.world, exc)
        return results
