"""
Task run metadata — the audit log of periodic task ticks.

Every tick of a monitored task records one ``TaskRun`` row so operators can
see when each loop last ran, how much it processed and why it failed.

``TaskRun`` is the only Pydantic model in the package that is NOT frozen —
its ``status``, ``rows_processed``, ``error_message`` and ``finished_at``
fields are updated as the tick executes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_TASK_NAMES = frozenset({
    "death_ingestion", "presence", "cleanup", "health_probe", "guild_sync",
})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed"})


class TaskRun(BaseModel):
    """Periodic task execution record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this tick.
        task_name: Which task produced this record.
        status: Current execution status.
        rows_processed: Task-specific count (new deaths, players flipped online...).
        error_message: Error description if ``status == "failed"``.
        started_at: UTC datetime when the tick began.
        finished_at: UTC datetime when the tick completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    task_name: str
    status: str = "started"
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("task_name")
    @classmethod
    def validate_task_name(cls, v: str) -> str:
        if v not in VALID_TASK_NAMES:
            raise ValueError(
                f"Unknown task_name '{v}'. Must be one of {sorted(VALID_TASK_NAMES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v
