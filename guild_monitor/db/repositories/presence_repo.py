"""
Repository for the online transition history (append-only).
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from guild_monitor.db.repositories.base import BaseRepository
from guild_monitor.models.player import OnlineTransition
from guild_monitor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class OnlineTransitionRepository(BaseRepository):
    """Read/write access to the ``online_transitions`` table."""

    def insert_many(self, transitions: list[OnlineTransition]) -> int:
        """Append transitions; returns the number written."""
        if not transitions:
            return 0
        self.executemany(
            """
            INSERT INTO online_transitions (
                player_id, is_online, level_at_transition, recorded_at
            ) VALUES (?, ?, ?, ?);
            """,
            [
                (
                    t.player_id,
                    int(t.is_online),
                    t.level_at_transition,
                    to_db_timestamp(t.recorded_at),
                )
                for t in transitions
            ],
        )
        return len(transitions)

    def get_for_player(self, player_id: int) -> list[OnlineTransition]:
        """All transitions of one player, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM online_transitions
            WHERE player_id = ?
            ORDER BY recorded_at, transition_id;
            """,
            (player_id,),
        )
        return [_row_to_transition(r) for r in rows]

    def delete_older_than(self, cutoff: datetime) -> int:
        return self._delete_before("online_transitions", "recorded_at", cutoff)

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM online_transitions;")
        assert row is not None
        return int(row["n"])


def _row_to_transition(row: sqlite3.Row) -> OnlineTransition:
    return OnlineTransition(
        transition_id=row["transition_id"],
        player_id=row["player_id"],
        is_online=bool(row["is_online"]),
        level_at_transition=row["level_at_transition"],
        recorded_at=from_db_timestamp(row["recorded_at"]),
    )
