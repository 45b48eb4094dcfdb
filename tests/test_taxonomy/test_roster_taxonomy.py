"""Tests for roster taxonomy enums and vocation normalization."""

from __future__ import annotations

import pytest

from guild_monitor.taxonomy.roster_taxonomy import GuildType, PlayerType, normalize_vocation


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Elite Knight", "Knight"),
        ("royal paladin", "Paladin"),
        ("Master Sorcerer", "Sorcerer"),
        (" Elder Druid ", "Druid"),
        ("Exalted Monk", "Monk"),
        ("Druid", "Druid"),
        ("None", "None"),
    ],
)
def test_normalize_vocation(raw, expected):
    assert normalize_vocation(raw) == expected


def test_player_type_follows_guild_type():
    assert PlayerType.for_guild(GuildType.ALLY) == PlayerType.GUILD_MEMBER
    assert PlayerType.for_guild(GuildType.ENEMY) == PlayerType.EXTERNAL_ENEMY


def test_enum_values_are_strings():
    assert GuildType("ENEMY") is GuildType.ENEMY
    assert f"{PlayerType.EXTERNAL_ENEMY}" == "EXTERNAL_ENEMY"
