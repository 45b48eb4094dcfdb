"""Supervisor: owns, schedules and heals the monitoring tasks.

Typical usage via the CLI::

    guild-monitor run

Or from code::

    supervisor = Supervisor(config)
    await supervisor.run_forever()   # blocks until SIGINT/SIGTERM

Tasks owned:
  - **death_ingestion** — the pipeline's own periodic loop (30 s).
  - **presence**        — roster reconciliation (60 s).
  - **cleanup**         — retention pruning and cache eviction (hourly).
  - **health_probe**    — storage/API/pipeline checks, restarts a dead
                          pipeline (5 min).

The supervisor constructs the single ``GameDataClient`` and passes it to
every task, so the response cache and rate-limit state are shared. Every
network call the client makes is recorded in ``api_usage``.
"""

from __future__ import annotations

import asyncio
import logging
import platform
import signal
from dataclasses import dataclass, field
from typing import Optional

from guild_monitor.client.batch import BatchDispatcher
from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.records import ApiCall, RateLimitState
from guild_monitor.config import AppConfig
from guild_monitor.db.connection import open_unit
from guild_monitor.db.repositories.usage_repo import ApiUsageRepository
from guild_monitor.monitoring.cleanup import CleanupResult, CleanupTask
from guild_monitor.monitoring.health import HealthProbe, HealthReport
from guild_monitor.pipeline.death_ingestion import DeathIngestionPipeline
from guild_monitor.pipeline.guild_sync import GuildSyncResult, GuildSynchronizer
from guild_monitor.pipeline.presence import PresenceReconciler
from guild_monitor.scheduler import PeriodicTask

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupervisorStatus:
    """Operational snapshot returned by ``Supervisor.get_status()``.

    Attributes:
        running:          ``True`` between ``start()`` and ``stop()``.
        active_tasks:     Names of task loops currently alive.
        pipeline_running: Death ingestion liveness flag.
        rate_limit:       Copy of the client's rate-limit state.
    """

    running: bool
    active_tasks: list[str] = field(default_factory=list)
    pipeline_running: bool = False
    rate_limit: Optional[RateLimitState] = None


class Supervisor:
    """Top-level owner of the client and every periodic task.

    Parameters
    ----------
    config:
        Application configuration.
    client:
        Game-data client to share. Built from ``config`` (with API usage
        recording) when *None*.
    db_path:
        Overrides ``config.database.db_path``.
    """

    def __init__(
        self,
        config: AppConfig,
        client: Optional[GameDataClient] = None,
        db_path: Optional[str] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.client = client or GameDataClient.from_config(
            config, usage_recorder=self._record_usage
        )
        self._owns_client = client is None

        dispatcher = BatchDispatcher.from_config(self.client, config)
        self.pipeline = DeathIngestionPipeline(
            config, self.client, dispatcher=dispatcher, db_path=self.db_path
        )
        self.presence = PresenceReconciler(config, self.client, db_path=self.db_path)
        self.cleanup = CleanupTask(config, self.client, db_path=self.db_path)
        self.health = HealthProbe(
            config, self.client, self.pipeline,
            db_path=self.db_path,
            restart_allowed=lambda: not self._stopping,
        )
        self.guild_sync = GuildSynchronizer(config, self.client, db_path=self.db_path)

        sched = config.scheduler
        self._periodic = [
            PeriodicTask(self.presence.task_name, sched.presence_interval_seconds, self.presence.run),
            PeriodicTask(self.cleanup.task_name, sched.cleanup_interval_seconds, self.cleanup.run),
            PeriodicTask(self.health.task_name, sched.health_interval_seconds, self.health.run),
        ]
        self._running = False
        self._stopping = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start every task. A no-op while already running.

        Raises:
            RuntimeError: If there is no running event loop.
        """
        if self._running:
            return
        self._stopping = False
        self.pipeline.start()
        for task in self._periodic:
            task.start()
        self._running = True
        log.info("Supervisor started with tasks: %s", ", ".join(self.get_status().active_tasks))

    async def stop(self) -> None:
        """Cancel every owned task. Calling it twice is a no-op."""
        if not self._running:
            return
        self._running = False
        self._stopping = True
        # health first: an in-flight tick must not restart a stopped pipeline
        for task in reversed(self._periodic):
            await task.stop()
        await self.pipeline.stop()
        log.info("Supervisor stopped.")

    async def aclose(self) -> None:
        """Stop all tasks and close the client if this supervisor built it."""
        await self.stop()
        if self._owns_client:
            await self.client.aclose()

    def get_status(self) -> SupervisorStatus:
        active = [self.pipeline.task_name] if self.pipeline.is_running else []
        active += [t.name for t in self._periodic if t.is_running]
        return SupervisorStatus(
            running=self._running,
            active_tasks=active,
            pipeline_running=self.pipeline.is_running,
            rate_limit=self.client.rate_limit_info(),
        )

    # ── Out-of-band entry points ──────────────────────────────────────────────

    async def sync_guild(self, guild_id: int) -> GuildSyncResult:
        """Immediate roster fetch and upsert for one guild ("sync now")."""
        return await self.guild_sync.sync_guild(guild_id)

    async def run_health_probe(self) -> HealthReport:
        return await self.health.probe()

    def run_cleanup(self) -> CleanupResult:
        return self.cleanup.run_cleanup()

    # ── Main loop ─────────────────────────────────────────────────────────────

    async def run_forever(self) -> None:
        """Start, then block until SIGINT (or SIGTERM on Linux/macOS)."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _shutdown(signum: int) -> None:
            log.info("Signal %d received — stopping supervisor.", signum)
            stop_event.set()

        windows = platform.system() == "Windows"
        if windows:
            # no loop signal handlers on Windows; SIGINT arrives on the main thread
            signal.signal(
                signal.SIGINT,
                lambda signum, frame: loop.call_soon_threadsafe(_shutdown, signum),
            )
        else:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)

        self.start()
        log.info("Supervisor running. db=%s", self.db_path)
        try:
            await stop_event.wait()
        finally:
            if windows:
                signal.signal(signal.SIGINT, signal.default_int_handler)
            else:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)
            await self.aclose()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _record_usage(self, call: ApiCall) -> None:
        # called from a worker thread by the client
        with open_unit(self.config.database, self.db_path, immediate=True) as conn:
            ApiUsageRepository(conn).insert(call)
