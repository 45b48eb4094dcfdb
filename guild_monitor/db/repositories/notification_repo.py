"""
Repository for the death notification outbox.

The monitor only decides that a notification should exist; delivery is
handled elsewhere and marks rows read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.taxonomy.death_taxonomy import NotificationKind
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """One outbox row."""

    notification_id: int
    guild_id: Optional[int]
    death_id: Optional[int]
    kind: NotificationKind
    message: str
    is_read: bool
    created_at: datetime


class NotificationRepository(BaseRepository):
    """Read/write access to the ``notifications`` table."""

    def insert(
        self,
        guild_id: Optional[int],
        death_id: Optional[int],
        kind: NotificationKind,
        message: str,
        created_at: datetime,
    ) -> int:
        self.execute(
            """
            INSERT INTO notifications (guild_id, death_id, kind, message, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            (guild_id, death_id, kind.value, message, to_db_timestamp(created_at)),
        )
        return self.last_insert_rowid()

    def get_unread(self, guild_id: int) -> list[Notification]:
        rows = self.fetchall(
            """
            SELECT * FROM notifications
            WHERE guild_id = ? AND is_read = 0
            ORDER BY created_at, notification_id;
            """,
            (guild_id,),
        )
        return [
            Notification(
                notification_id=r["notification_id"],
                guild_id=r["guild_id"],
                death_id=r["death_id"],
                kind=NotificationKind(r["kind"]),
                message=r["message"],
                is_read=bool(r["is_read"]),
                created_at=from_db_timestamp(r["created_at"]),
            )
            for r in rows
        ]

    def mark_read(self, notification_ids: list[int]) -> None:
        self.executemany(
            "UPDATE notifications SET is_read = 1 WHERE notification_id = ?;",
            [(nid,) for nid in notification_ids],
        )

    def delete_read_older_than(self, cutoff: datetime) -> int:
        return self._delete_before("notifications", "created_at", cutoff, "is_read = 1")
