"""
Abstract base class for every monitored task.

Every task follows the same contract:
  1. Receive ``AppConfig`` at construction.
  2. ``await run()`` is the tick entry point used by the scheduler.
  3. ``run()`` creates a ``TaskRun`` record, awaits ``_execute()``,
     and persists the run record with its final status.
  4. ``_execute()`` is the task-specific implementation.

Store writes run in worker threads through ``asyncio.to_thread`` and open
their unit with ``connect(immediate=True)``, so a locked database delays
only the task that is writing, never the event loop.

Per-entity failures (one player, one world) are handled inside
``_execute()``; anything that escapes it marks the run ``failed`` and is
re-raised for ``PeriodicTask`` to log.

Usage::

    class MyTask(MonitorTask):
        task_name = "cleanup"

        async def _execute(self, run: TaskRun) -> int:
            return 42

    run = await MyTask(config=app_config).run()
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from uuid import uuid4

from guild_monitor.config import AppConfig
from guild_monitor.db.connection import open_unit
from guild_monitor.models.meta import TaskRun
from guild_monitor.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class MonitorTask(ABC):
    """Abstract base for all monitored tasks.

    Subclasses must:
      1. Set ``task_name`` class variable.
      2. Implement ``async _execute(run) -> int``.

    Attributes:
        task_name: String identifier matching a valid ``TaskRun.task_name``.
        config: The application configuration.
        db_path: Path to the SQLite database (defaults to ``config.database.db_path``).
    """

    task_name: str  # Override in subclass

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path

    def connect(self, immediate: bool = False) -> AbstractContextManager[sqlite3.Connection]:
        """Open one unit of work; pass ``immediate=True`` for writes."""
        return open_unit(self.config.database, self.db_path, immediate=immediate)

    async def run(self) -> TaskRun:
        """Execute one tick and return the finalized ``TaskRun``.

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording ``status='failed'``.
        """
        run = TaskRun(
            run_slug=str(uuid4()),
            task_name=self.task_name,
            started_at=utcnow(),
        )
        logger.debug("Task [%s] tick starting | run_slug=%s", self.task_name, run.run_slug)

        try:
            rows = await self._execute(run)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Task [%s] FAILED: %s | run_slug=%s",
                self.task_name, exc, run.run_slug,
            )
            await asyncio.to_thread(self._persist_run, run)
            raise

        run.status = "success"
        run.rows_processed = rows
        run.finished_at = utcnow()
        logger.info(
            "Task [%s] completed | rows=%d | run_slug=%s",
            self.task_name, rows, run.run_slug,
        )
        await asyncio.to_thread(self._persist_run, run)
        return run

    @abstractmethod
    async def _execute(self, run: TaskRun) -> int:
        """Task-specific implementation.

        Args:
            run: The in-progress ``TaskRun`` record (mutable).

        Returns:
            Integer count of rows/records processed.
        """
        ...

    def _persist_run(self, run: TaskRun) -> None:
        """Write the ``TaskRun`` record.

        Errors are logged rather than raised so that an audit failure never
        masks the task's own outcome.
        """
        try:
            from guild_monitor.db.repositories.run_repo import TaskRunRepository

            with self.connect(immediate=True) as conn:
                run.run_id = TaskRunRepository(conn).insert_run(run)
        except Exception as exc:
            logger.error(
                "Failed to persist TaskRun for run_slug=%s: %s",
                run.run_slug, exc,
            )
