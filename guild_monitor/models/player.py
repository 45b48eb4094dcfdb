"""
Tracked player and presence history models.

``TrackedPlayer`` is identified by ``(name, world)``. It is created by a
guild roster sync, mutated by the presence loop (``is_online``,
``last_seen_at``) and by death ingestion (``last_death_check_at``, the
watermark), and never deleted by the monitor.

``OnlineTransition`` is the append-only log of "went online" events, kept
for level-growth analytics and pruned after the retention window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from guild_monitor.taxonomy.roster_taxonomy import PlayerType
from guild_monitor.utils.time_utils import EPOCH


class TrackedPlayer(BaseModel):
    """A character whose deaths and online status are monitored.

    Attributes:
        player_id: Auto-assigned DB PK; ``None`` before insertion.
        name: Character name (matching upstream is case-insensitive).
        world: Game world.
        guild_id: FK to the guild this character was synced from.
        player_type: ``GUILD_MEMBER`` or ``EXTERNAL_ENEMY``.
        level: Current level as of the last roster sync.
        vocation: Base vocation (see ``normalize_vocation``).
        is_online: Last reconciled online flag.
        last_seen_at: UTC datetime the character was last seen online.
        last_death_check_at: Death watermark; deaths at or before it are
            already ingested.
    """

    model_config = ConfigDict(frozen=True)

    player_id: Optional[int] = None
    name: str
    world: str
    guild_id: Optional[int] = None
    player_type: PlayerType = PlayerType.GUILD_MEMBER
    level: int = Field(default=1, ge=0)
    vocation: str = "None"
    is_online: bool = False
    last_seen_at: Optional[datetime] = None
    last_death_check_at: datetime = EPOCH

    @field_validator("name", "world")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Player name and world must not be blank.")
        return v.strip()

    @property
    def name_key(self) -> str:
        """Lowercased name used for case-insensitive roster matching."""
        return self.name.lower()


class OnlineTransition(BaseModel):
    """One "went online" event for a tracked player.

    Attributes:
        transition_id: Auto-assigned DB PK; ``None`` before insertion.
        player_id: FK to ``tracked_players``.
        is_online: Always ``True`` for rows written by the presence loop.
        level_at_transition: Level observed when the player came online.
        recorded_at: UTC datetime of the reconciliation tick.
    """

    model_config = ConfigDict(frozen=True)

    transition_id: Optional[int] = None
    player_id: int
    is_online: bool = True
    level_at_transition: int = Field(ge=0)
    recorded_at: datetime
