"""
Health probe for the guild monitoring engine.

Checks, in order:
    storage  : trivial ``SELECT 1`` round trip.
    api      : uncached roster fetch of the probe world.
    pipeline : death ingestion loop is alive.

When the pipeline is not running the probe restarts it. This is the
engine's only self-healing action; ``start()`` on the pipeline is a no-op
when it is already alive, so repeated restarts never stack loops.

Overall status:
    healthy  : every check is ok.
    degraded : at least one check failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.config import AppConfig
from guild_monitor.db.connection import ping
from guild_monitor.models.meta import TaskRun
from guild_monitor.pipeline.base import MonitorTask
from guild_monitor.utils.time_utils import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)

# Check status constants
HEALTH_OK     = "ok"
HEALTH_FAILED = "failed"

# Overall status constants
OVERALL_HEALTHY  = "healthy"
OVERALL_DEGRADED = "degraded"


class Restartable(Protocol):
    @property
    def is_running(self) -> bool: ...

    def start(self) -> None: ...


@dataclass(frozen=True)
class HealthCheck:
    """Result of one named check.

    Attributes:
        name:   ``"storage"``, ``"api"`` or ``"pipeline"``.
        status: ``"ok"`` or ``"failed"``.
        detail: Short human-readable explanation.
    """

    name:   str
    status: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == HEALTH_OK


@dataclass(frozen=True)
class HealthReport:
    """Outcome of one probe.

    Attributes:
        checked_at:         ISO-8601 UTC timestamp.
        checks:             Individual check results, in probe order.
        pipeline_restarted: ``True`` if the probe restarted the pipeline.
    """

    checked_at:         str
    checks:             tuple[HealthCheck, ...] = field(default_factory=tuple)
    pipeline_restarted: bool = False

    @property
    def overall(self) -> str:
        return OVERALL_HEALTHY if all(c.ok for c in self.checks) else OVERALL_DEGRADED

    def get(self, name: str) -> Optional[HealthCheck]:
        return next((c for c in self.checks if c.name == name), None)


class HealthProbe(MonitorTask):
    """Periodic health probe with pipeline restart.

    Args:
        config: Application configuration.
        client: Shared game-data client.
        pipeline: The death ingestion pipeline (anything with ``is_running``
            and ``start()``).
        db_path: Overrides ``config.database.db_path``.
        restart_allowed: Checked before restarting the pipeline; the
            supervisor returns ``False`` from ``stop()`` until the next
            ``start()``.
    """

    task_name = "health_probe"

    def __init__(
        self,
        config: AppConfig,
        client: GameDataClient,
        pipeline: Restartable,
        db_path: Optional[str] = None,
        restart_allowed: Optional[Callable[[], bool]] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.client = client
        self.pipeline = pipeline
        self._restart_allowed = restart_allowed or (lambda: True)
        self.last_report: Optional[HealthReport] = None

    async def _execute(self, run: TaskRun) -> int:
        report = await self.probe()
        return sum(1 for c in report.checks if c.ok)

    async def probe(self) -> HealthReport:
        """Run every check, restart the pipeline if needed, and log the outcome."""
        checks = [await asyncio.to_thread(self._check_storage), await self._check_api()]

        restarted = False
        if self.pipeline.is_running:
            checks.append(HealthCheck("pipeline", HEALTH_OK, "running"))
        elif not self._restart_allowed():
            checks.append(HealthCheck("pipeline", HEALTH_FAILED, "not running; shutting down"))
        else:
            logger.warning("Death ingestion pipeline is not running; restarting it.")
            self.pipeline.start()
            restarted = True
            checks.append(HealthCheck("pipeline", HEALTH_FAILED, "not running; restarted"))

        report = HealthReport(
            checked_at=to_db_timestamp(utcnow()),
            checks=tuple(checks),
            pipeline_restarted=restarted,
        )
        self.last_report = report

        summary = " | ".join(f"{c.name}={c.status}" for c in report.checks)
        if report.overall == OVERALL_HEALTHY:
            logger.info("Health probe: %s | %s", report.overall, summary)
        else:
            logger.warning("Health probe: %s | %s", report.overall, summary)
        return report

    def _check_storage(self) -> HealthCheck:
        try:
            with self.connect() as conn:
                reachable = ping(conn)
        except Exception as exc:
            logger.error("Storage health check failed: %s", exc)
            return HealthCheck("storage", HEALTH_FAILED, str(exc))
        if not reachable:
            return HealthCheck("storage", HEALTH_FAILED, "unexpected ping result")
        return HealthCheck("storage", HEALTH_OK)

    async def _check_api(self) -> HealthCheck:
        if await self.client.health_check():
            return HealthCheck("api", HEALTH_OK)
        return HealthCheck(
            "api", HEALTH_FAILED, f"roster fetch for {self.client.health_probe_world} failed"
        )
