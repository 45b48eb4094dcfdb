"""
Typed records parsed from TibiaData v4 responses.

All records are frozen dataclasses: once parsed they are cached and shared
between the death and presence loops, so nothing may mutate them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from guild_monitor.models.death import Killer


@dataclass(frozen=True)
class DeathEntry:
    """One death from a character's recent-deaths window."""

    occurred_at: datetime
    level: int
    killers: tuple[Killer, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class CharacterRecord:
    """A character profile with its recent deaths (newest first upstream)."""

    name: str
    world: str
    level: int
    vocation: str
    guild_name: Optional[str] = None
    deaths: tuple[DeathEntry, ...] = ()


@dataclass(frozen=True)
class OnlineCharacter:
    """One entry of a world's online list."""

    name: str
    level: int
    vocation: str


@dataclass(frozen=True)
class WorldRoster:
    """Characters currently online in one world."""

    world: str
    players: tuple[OnlineCharacter, ...] = ()

    @property
    def names(self) -> frozenset[str]:
        """Lowercased names of every online character."""
        return frozenset(p.name.lower() for p in self.players)

    def level_of(self, name: str) -> Optional[int]:
        """Level of ``name`` (case-insensitive) if it is online."""
        key = name.lower()
        for player in self.players:
            if player.name.lower() == key:
                return player.level
        return None


@dataclass(frozen=True)
class GuildMember:
    """One member of a guild roster."""

    name: str
    level: int
    vocation: str
    rank: str = ""
    status: str = "offline"


@dataclass(frozen=True)
class GuildDetails:
    """A guild and its member list."""

    name: str
    world: str
    members: tuple[GuildMember, ...] = ()

    @property
    def online_count(self) -> int:
        return sum(1 for m in self.members if m.status == "online")

    @property
    def offline_count(self) -> int:
        return len(self.members) - self.online_count


@dataclass(frozen=True)
class ApiCall:
    """Usage record for one outbound request (cache hits are not recorded)."""

    endpoint: str
    status_code: Optional[int]
    duration_ms: int
    requested_at: datetime


@dataclass
class RateLimitState:
    """Process-wide rate-limit accounting.

    Attributes:
        limit:     Requests allowed per window.
        remaining: Requests left in the current window.
        reset_at:  Epoch seconds when the window resets.
    """

    limit: int = 60
    remaining: int = 60
    reset_at: float = field(default=0.0)
