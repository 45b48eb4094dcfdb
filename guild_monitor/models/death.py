"""
Death models and the PVP/PVE classification rule.

The upstream API has no stable death id, so a death is identified by
``(player_id, occurred_at)``. The storage layer enforces that pair as a
unique key; ingestion relies on the per-player watermark to avoid
re-inserting the recent-deaths window the API returns on every call.

Classification rule (evaluated per death, from its killer list only):
  a death is PVP if at least one killer is a player and not a summoned
  creature; otherwise it is PVE. An empty killer list is PVE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from guild_monitor.taxonomy.death_taxonomy import DeathClassification


class Killer(BaseModel):
    """One entry of an upstream death's killer list.

    Attributes:
        name: Player or creature name.
        is_player: ``True`` when upstream flags the killer as a player.
        is_summon: ``True`` when the killer is a summoned creature.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    is_player: bool = False
    is_summon: bool = False

    @property
    def counts_as_player(self) -> bool:
        return self.is_player and not self.is_summon


def classify_killers(killers: Sequence[Killer]) -> DeathClassification:
    """Classify a death from its killers: any player killer makes it PVP."""
    if any(killer.counts_as_player for killer in killers):
        return DeathClassification.PVP
    return DeathClassification.PVE


class DeathEvent(BaseModel):
    """A persisted death of a tracked player. Immutable once created.

    Attributes:
        death_id: Auto-assigned DB PK; ``None`` before insertion.
        player_id: FK to ``tracked_players``.
        occurred_at: Upstream death timestamp (UTC), the natural dedup key.
        level_at_death: Character level at the time of death.
        killer_names: Killer names in upstream order.
        classification: ``PVP`` or ``PVE``.
        raw_reason: Upstream free-text death description.
    """

    model_config = ConfigDict(frozen=True)

    death_id: Optional[int] = None
    player_id: int
    occurred_at: datetime
    level_at_death: int = Field(ge=0)
    killer_names: tuple[str, ...] = ()
    classification: DeathClassification
    raw_reason: str = ""

    @property
    def is_pvp(self) -> bool:
        return self.classification == DeathClassification.PVP
