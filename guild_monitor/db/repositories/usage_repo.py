"""
Repository for outbound API call logs.
"""

from __future__ import annotations

import logging
from datetime import datetime

from guild_monitor.client.records import ApiCall
from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.utils.time_utils import to_db_timestamp

logger = logging.getLogger(__name__)


class ApiUsageRepository(BaseRepository):
    """Read/write access to the ``api_usage`` table."""

    def insert(self, call: ApiCall) -> int:
        self.execute(
            """
            INSERT INTO api_usage (endpoint, status_code, duration_ms, requested_at)
            VALUES (?, ?, ?, ?);
            """,
            (
                call.endpoint,
                call.status_code,
                call.duration_ms,
                to_db_timestamp(call.requested_at),
            ),
        )
        return self.last_insert_rowid()

    def count_since(self, since: datetime) -> int:
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM api_usage WHERE requested_at >= ?;",
            (to_db_timestamp(since),),
        )
        assert row is not None
        return int(row["n"])

    def delete_older_than(self, cutoff: datetime) -> int:
        return self._delete_before("api_usage", "requested_at", cutoff)
