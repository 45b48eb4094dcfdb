"""
Death Ingestion Pipeline.

Each tick:
  1. Load every active tracked player and group them by world.
  2. For each world, fetch the players' character records through the
     ``BatchDispatcher``.
  3. For each player, keep only deaths strictly after the player's
     watermark (``last_death_check_at``). The API returns the same
     recent-deaths window on every call, so this filter is what makes a
     repeated tick a no-op.
  4. Classify the new deaths, insert them, write one notification row per
     inserted death and advance the watermark to the newest new death. All
     of that happens in one transaction per player.

A player whose lookup failed is skipped and keeps its watermark. A player
whose persistence failed is rolled back, logged, and skipped; every other
player still advances.

The pipeline owns its own ``PeriodicTask``. ``is_running`` reflects whether
that loop is alive, which is what the supervisor's health probe checks.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from guild_monitor.client.batch import BatchDispatcher
from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.records import CharacterRecord, DeathEntry
from guild_monitor.config import AppConfig
from guild_monitor.db.repositories.death_repo import DeathEventRepository
from guild_monitor.db.repositories.notification_repo import NotificationRepository
from guild_monitor.db.repositories.player_repo import TrackedPlayerRepository
from guild_monitor.exceptions import ConfigurationError, NotFound
from guild_monitor.models.death import DeathEvent, classify_killers
from guild_monitor.models.meta import TaskRun
from guild_monitor.models.player import TrackedPlayer
from guild_monitor.pipeline.base import MonitorTask
from guild_monitor.scheduler import PeriodicTask
from guild_monitor.taxonomy.death_taxonomy import NotificationKind
from guild_monitor.taxonomy.roster_taxonomy import PlayerType
from guild_monitor.utils.logging import log_context
from guild_monitor.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one ingestion tick.

    Attributes:
        players_checked: Players whose character record was fetched.
        players_skipped: Players whose lookup failed (absent from the batch).
        players_failed:  Players whose persistence failed and was rolled back.
        new_deaths:      Death rows inserted this tick.
        failed_players:  Names of players in ``players_failed``.
    """

    players_checked: int = 0
    players_skipped: int = 0
    players_failed: int = 0
    new_deaths: int = 0
    failed_players: list[str] = field(default_factory=list)


def select_new_deaths(deaths: Iterable[DeathEntry], watermark: datetime) -> list[DeathEntry]:
    """Deaths strictly after ``watermark``, in upstream order."""
    return [d for d in deaths if d.occurred_at > watermark]


def build_death_event(player_id: int, entry: DeathEntry) -> DeathEvent:
    """Turn an upstream death into a classified ``DeathEvent``."""
    return DeathEvent(
        player_id=player_id,
        occurred_at=entry.occurred_at,
        level_at_death=entry.level,
        killer_names=tuple(k.name for k in entry.killers),
        classification=classify_killers(entry.killers),
        raw_reason=entry.reason,
    )


def notification_message(player_name: str, death: DeathEvent) -> str:
    return (
        f"{player_name} (level {death.level_at_death}) died: "
        f"{death.classification.value} — {death.raw_reason}"
    )


class DeathIngestionPipeline(MonitorTask):
    """Watermark-based death sync for every active tracked player.

    Args:
        config: Application configuration.
        client: Shared game-data client.
        dispatcher: Batch dispatcher; built from ``config`` if omitted.
        db_path: Overrides ``config.database.db_path``.
    """

    task_name = "death_ingestion"

    def __init__(
        self,
        config: AppConfig,
        client: GameDataClient,
        dispatcher: Optional[BatchDispatcher] = None,
        db_path: Optional[str] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.client = client
        self.dispatcher = dispatcher or BatchDispatcher.from_config(client, config)
        self.last_result: Optional[IngestionResult] = None
        self._periodic = PeriodicTask(
            self.task_name, config.scheduler.death_interval_seconds, self.run
        )

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic loop. Safe to call repeatedly."""
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()

    @property
    def is_running(self) -> bool:
        return self._periodic.is_running

    # ── Tick ───────────────────────────────────────────────────────────────────

    async def _execute(self, run: TaskRun) -> int:
        result = await self.ingest_all()
        return result.new_deaths

    async def ingest_all(self) -> IngestionResult:
        """Run one ingestion pass over every active tracked player."""
        result = IngestionResult()
        with self.connect() as conn:
            players = TrackedPlayerRepository(conn).get_active()

        by_world: dict[str, list[TrackedPlayer]] = defaultdict(list)
        for player in players:
            by_world[player.world].append(player)

        for world, world_players in by_world.items():
            with log_context(world=world):
                await self._ingest_world(world, world_players, result)

        self.last_result = result
        logger.info(
            "Death ingestion: %d new death(s) | checked=%d skipped=%d failed=%d",
            result.new_deaths, result.players_checked,
            result.players_skipped, result.players_failed,
        )
        return result

    async def _ingest_world(
        self, world: str, players: list[TrackedPlayer], result: IngestionResult
    ) -> None:
        records = await self.dispatcher.fetch_many([p.name for p in players])
        for player in players:
            record = records.get(player.name_key)
            if record is None:
                result.players_skipped += 1
                continue
            result.players_checked += 1
            try:
                result.new_deaths += await asyncio.to_thread(
                    self._persist_player, player, record
                )
            except Exception as exc:
                result.players_failed += 1
                result.failed_players.append(player.name)
                logger.error(
                    "Failed to persist deaths for %s (%s): %s",
                    player.name, world, exc,
                )

    async def ingest_player(self, player_id: int) -> int:
        """Out-of-band death sync for one tracked player (uncached fetch).

        Returns:
            Number of new deaths stored.

        Raises:
            ConfigurationError: If ``player_id`` is unknown.
            RateLimited, UpstreamUnavailable: Propagated to the caller.
        """
        with self.connect() as conn:
            player = TrackedPlayerRepository(conn).get_by_id(player_id)
        if player is None:
            raise ConfigurationError(f"Unknown player_id={player_id}.")

        try:
            record = await self.client.fetch_character(player.name, use_cache=False)
        except NotFound:
            logger.warning("Character %s no longer exists upstream.", player.name)
            return 0
        return await asyncio.to_thread(self._persist_player, player, record)

    def _persist_player(self, player: TrackedPlayer, record: CharacterRecord) -> int:
        """Store a player's new deaths and advance its watermark atomically."""
        assert player.player_id is not None
        fresh = select_new_deaths(record.deaths, player.last_death_check_at)
        if not fresh:
            return 0

        kind = (
            NotificationKind.ENEMY_DEATH
            if player.player_type == PlayerType.EXTERNAL_ENEMY
            else NotificationKind.MEMBER_DEATH
        )
        now = utcnow()
        with self.connect(immediate=True) as conn:
            created = DeathEventRepository(conn).insert_many(
                build_death_event(player.player_id, entry) for entry in fresh
            )
            notifications = NotificationRepository(conn)
            for death in created:
                notifications.insert(
                    guild_id=player.guild_id,
                    death_id=death.death_id,
                    kind=kind,
                    message=notification_message(player.name, death),
                    created_at=now,
                )
            TrackedPlayerRepository(conn).advance_watermark(
                player.player_id, max(entry.occurred_at for entry in fresh)
            )

        if created:
            logger.info("Stored %d new death(s) for %s.", len(created), player.name)
        return len(created)
