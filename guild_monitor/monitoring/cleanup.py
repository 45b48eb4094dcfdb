"""
Retention cleanup: pure storage hygiene, no business semantics.

Deletes:
  - online transitions older than ``retention.online_history_days`` (7);
  - API usage rows, task runs and read notifications older than
    ``retention.log_days`` (30);
  - expired entries of the client's response cache.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.config import AppConfig
from guild_monitor.db.repositories.notification_repo import NotificationRepository
from guild_monitor.db.repositories.presence_repo import OnlineTransitionRepository
from guild_monitor.db.repositories.run_repo import TaskRunRepository
from guild_monitor.db.repositories.usage_repo import ApiUsageRepository
from guild_monitor.models.meta import TaskRun
from guild_monitor.pipeline.base import MonitorTask
from guild_monitor.utils.time_utils import days_ago, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    transitions_deleted: int
    usage_deleted: int
    runs_deleted: int
    notifications_deleted: int
    cache_evicted: int

    @property
    def total(self) -> int:
        return (
            self.transitions_deleted + self.usage_deleted + self.runs_deleted
            + self.notifications_deleted + self.cache_evicted
        )


class CleanupTask(MonitorTask):
    """Hourly pruning of history, logs and the response cache."""

    task_name = "cleanup"

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

    async def _execute(self, run: TaskRun) -> int:
        result = await asyncio.to_thread(self.run_cleanup)
        return result.total

    def run_cleanup(self) -> CleanupResult:
        now = self._clock()
        history_cutoff = days_ago(self.config.retention.online_history_days, now)
        log_cutoff = days_ago(self.config.retention.log_days, now)

        with self.connect(immediate=True) as conn:
            transitions = OnlineTransitionRepository(conn).delete_older_than(history_cutoff)
            usage = ApiUsageRepository(conn).delete_older_than(log_cutoff)
            runs = TaskRunRepository(conn).delete_older_than(log_cutoff)
            notifications = NotificationRepository(conn).delete_read_older_than(log_cutoff)

        result = CleanupResult(
            transitions_deleted=transitions,
            usage_deleted=usage,
            runs_deleted=runs,
            notifications_deleted=notifications,
            cache_evicted=self.client.clear_expired(),
        )
        logger.info(
            "Cleanup: transitions=%d usage=%d runs=%d notifications=%d cache=%d",
            result.transitions_deleted, result.usage_deleted, result.runs_deleted,
            result.notifications_deleted, result.cache_evicted,
        )
        return result
