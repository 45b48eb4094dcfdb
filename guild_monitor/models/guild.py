"""
Guild model — the unit of configuration the monitor tracks players for.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from guild_monitor.taxonomy.roster_taxonomy import GuildType


class Guild(BaseModel):
    """A configured guild whose roster is synced into tracked players.

    Attributes:
        guild_id: Auto-assigned DB PK; ``None`` before insertion.
        name: Guild name as shown upstream.
        world: Game world the guild lives on.
        guild_type: ``ALLY`` or ``ENEMY``.
        is_active: Inactive guilds' players are skipped by every task.
        last_sync_at: UTC datetime of the last successful roster sync.
    """

    model_config = ConfigDict(frozen=True)

    guild_id: Optional[int] = None
    name: str
    world: str
    guild_type: GuildType = GuildType.ALLY
    is_active: bool = True
    last_sync_at: Optional[datetime] = None

    @field_validator("name", "world")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Guild name and world must not be blank.")
        return v.strip()
