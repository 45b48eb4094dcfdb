"""
Presence Reconciliation Loop.

For each distinct world with active tracked players, fetch the online
roster and reconcile in two phases inside one transaction:

  (a) mark every tracked player of the world offline;
  (b) mark every player whose name is on the roster (case-insensitive)
      online with ``last_seen_at = now``.

Rewriting the whole world each tick means a tick that crashed half-way is
corrected by the next successful one.

Only "went online" flips are appended to ``online_transitions``; going
offline is not logged. A world whose roster fetch fails is logged and
skipped, and its stored flags stay as they were until the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.records import WorldRoster
from guild_monitor.config import AppConfig
from guild_monitor.db.repositories.player_repo import TrackedPlayerRepository
from guild_monitor.db.repositories.presence_repo import OnlineTransitionRepository
from guild_monitor.exceptions import GameDataError
from guild_monitor.models.meta import TaskRun
from guild_monitor.models.player import OnlineTransition
from guild_monitor.pipeline.base import MonitorTask
from guild_monitor.utils.logging import log_context
from guild_monitor.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PresenceResult:
    """Outcome of one reconciliation tick."""

    worlds_checked: int = 0
    players_online: int = 0
    transitions: int = 0
    failed_worlds: list[str] = field(default_factory=list)


class PresenceReconciler(MonitorTask):
    """Reconciles stored online flags against each world's roster.

    Args:
        config: Application configuration.
        client: Shared game-data client.
        db_path: Overrides ``config.database.db_path``.
        clock: Returns the tick's ``now``; injectable for tests.
    """

    task_name = "presence"

    def __init__(
        self,
        config: AppConfig,
        client: GameDataClient,
        db_path: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(config, db_path)
        self.client = client
        self._clock = clock
        self.last_result: Optional[PresenceResult] = None

    async def _execute(self, run: TaskRun) -> int:
        result = await self.reconcile_all()
        return result.transitions

    async def reconcile_all(self) -> PresenceResult:
        """Reconcile every world that has active tracked players."""
        result = PresenceResult()
        with self.connect() as conn:
            worlds = TrackedPlayerRepository(conn).get_active_worlds()

        for world in worlds:
            with log_context(world=world):
                await self._reconcile_world(world, result)

        self.last_result = result
        logger.info(
            "Presence: %d world(s) | %d online | %d went online | %d failed",
            result.worlds_checked, result.players_online,
            result.transitions, len(result.failed_worlds),
        )
        return result

    async def _reconcile_world(self, world: str, result: PresenceResult) -> None:
        try:
            roster = await self.client.fetch_world_roster(world)
        except GameDataError as exc:
            logger.warning("Skipping presence for %s: %s", world, exc)
            result.failed_worlds.append(world)
            return

        try:
            online, transitions = await asyncio.to_thread(self.apply_roster, world, roster)
        except Exception as exc:
            logger.error("Failed to reconcile presence for %s: %s", world, exc)
            result.failed_worlds.append(world)
            return

        result.worlds_checked += 1
        result.players_online += online
        result.transitions += transitions

    def apply_roster(self, world: str, roster: WorldRoster) -> tuple[int, int]:
        """Apply one world's roster to the store.

        Returns:
            ``(players_online, transitions_recorded)``.
        """
        now = self._clock()
        online_names = roster.names
        with self.connect(immediate=True) as conn:
            players_repo = TrackedPlayerRepository(conn)
            players = players_repo.get_active(world)
            was_online = {p.player_id for p in players if p.is_online}

            players_repo.mark_world_offline(world)
            online = [p for p in players if p.name_key in online_names]
            players_repo.mark_online([p.player_id for p in online], now)

            transitions = []
            for player in online:
                if player.player_id in was_online:
                    continue
                level = roster.level_of(player.name)
                transitions.append(
                    OnlineTransition(
                        player_id=player.player_id,
                        level_at_transition=player.level if level is None else level,
                        recorded_at=now,
                    )
                )
            OnlineTransitionRepository(conn).insert_many(transitions)

        return len(online), len(transitions)
