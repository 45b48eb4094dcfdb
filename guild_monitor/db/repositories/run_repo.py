"""
Repository for task run audit records.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.models.meta import TaskRun
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class TaskRunRepository(BaseRepository):
    """Read/write access to the ``task_runs`` table."""

    def insert_run(self, run: TaskRun) -> int:
        self.execute(
            """
            INSERT INTO task_runs (
                run_slug, task_name, status, rows_processed,
                error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.task_name,
                run.status,
                run.rows_processed,
                run.error_message,
                to_db_timestamp(run.started_at),
                to_db_timestamp(run.finished_at) if run.finished_at else None,
            ),
        )
        return self.last_insert_rowid()

    def get_latest(self, task_name: str) -> Optional[TaskRun]:
        row = self.fetchone(
            """
            SELECT * FROM task_runs
            WHERE task_name = ?
            ORDER BY started_at DESC, run_id DESC
            LIMIT 1;
            """,
            (task_name,),
        )
        return _row_to_run(row) if row else None

    def count(self, task_name: Optional[str] = None) -> int:
        if task_name is None:
            row = self.fetchone("SELECT COUNT(*) AS n FROM task_runs;")
        else:
            row = self.fetchone(
                "SELECT COUNT(*) AS n FROM task_runs WHERE task_name = ?;", (task_name,)
            )
        assert row is not None
        return int(row["n"])

    def delete_older_than(self, cutoff: datetime) -> int:
        return self._delete_before("task_runs", "started_at", cutoff)


def _row_to_run(row: sqlite3.Row) -> TaskRun:
    return TaskRun(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        task_name=row["task_name"],
        status=row["status"],
        rows_processed=row["rows_processed"],
        error_message=row["error_message"],
        started_at=from_db_timestamp(row["started_at"]),
        finished_at=from_db_timestamp(row["finished_at"]),
    )
