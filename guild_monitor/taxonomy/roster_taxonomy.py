"""
Roster taxonomy for tracked guilds and players.

  - ``GuildType``  — whether a configured guild is our own (ALLY) or watched (ENEMY).
  - ``PlayerType`` — how a tracked character relates to its guild.
  - ``normalize_vocation()`` — collapse promoted vocations to their base.

This module has NO imports from any other ``guild_monitor`` package.
"""

from enum import StrEnum


class GuildType(StrEnum):
    """Relationship of a configured guild to the monitoring account."""

    ALLY = "ALLY"
    """Our own guild; deaths produce member notifications."""

    ENEMY = "ENEMY"
    """A watched guild; its members are tracked as external enemies."""


class PlayerType(StrEnum):
    """Role of a tracked character, derived from its guild's type."""

    GUILD_MEMBER = "GUILD_MEMBER"
    EXTERNAL_ENEMY = "EXTERNAL_ENEMY"

    @classmethod
    def for_guild(cls, guild_type: GuildType) -> "PlayerType":
        return cls.EXTERNAL_ENEMY if guild_type == GuildType.ENEMY else cls.GUILD_MEMBER


# Promoted vocation → base vocation
_VOCATION_BASE: dict[str, str] = {
    "knight":          "Knight",
    "elite knight":    "Knight",
    "paladin":         "Paladin",
    "royal paladin":   "Paladin",
    "sorcerer":        "Sorcerer",
    "master sorcerer": "Sorcerer",
    "druid":           "Druid",
    "elder druid":     "Druid",
    "monk":            "Monk",
    "exalted monk":    "Monk",
}


def normalize_vocation(vocation: str) -> str:
    """Return the base vocation for ``vocation``; unknown values pass through."""
    return _VOCATION_BASE.get(vocation.strip().lower(), vocation.strip())
