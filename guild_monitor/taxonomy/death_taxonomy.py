"""
Death taxonomy.

``DeathClassification`` is computed per death from its killer list (see
``guild_monitor.models.death.classify_killers``). ``NotificationKind`` tags
the outbox rows written for each newly ingested death.

This module has NO imports from any other ``guild_monitor`` package.
"""

from enum import StrEnum


class DeathClassification(StrEnum):
    """Whether a death was caused by another player."""

    PVP = "PVP"
    PVE = "PVE"


class NotificationKind(StrEnum):
    """Kind of notification emitted for a newly ingested death."""

    MEMBER_DEATH = "MEMBER_DEATH"
    ENEMY_DEATH = "ENEMY_DEATH"
