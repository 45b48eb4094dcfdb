"""
Shared pytest fixtures for the guild monitor test suite.

Provides:
  - ``db_path``: a temporary SQLite file with the full schema applied.
  - ``app_config``: an ``AppConfig`` pointing at ``db_path``.
  - ``seeded``: one ally guild on Antica with two tracked players and one
    enemy guild on Secura with one tracked player.
  - ``FakeGameDataClient``: in-memory stand-in for ``GameDataClient``.
  - ``build``: record builders for characters, deaths, rosters and guilds.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest

from guild_monitor.client.records import (
    CharacterRecord,
    DeathEntry,
    GuildDetails,
    GuildMember,
    OnlineCharacter,
    RateLimitState,
    WorldRoster,
)
from guild_monitor.config import AppConfig, DatabaseConfig
from guild_monitor.db.connection import get_connection
from guild_monitor.db.repositories.guild_repo import GuildRepository
from guild_monitor.db.repositories.player_repo import TrackedPlayerRepository
from guild_monitor.db.schema import apply_schema
from guild_monitor.exceptions import ConfigurationError, NotFound
from guild_monitor.models.death import Killer
from guild_monitor.models.guild import Guild
from guild_monitor.models.player import TrackedPlayer
from guild_monitor.taxonomy.roster_taxonomy import GuildType, PlayerType

T0 = datetime(2024, 3, 1, 18, 0, 0, tzinfo=timezone.utc)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path) -> str:
    """Path of a fresh SQLite file with the full schema applied."""
    path = str(tmp_path / "monitor.db")
    with get_connection(path) as conn:
        apply_schema(conn)
    return path


@pytest.fixture
def app_config(db_path) -> AppConfig:
    return AppConfig(database=DatabaseConfig(db_path=db_path))


@dataclass
class Seeded:
    ally_guild_id: int
    enemy_guild_id: int
    bob_id: int
    ann_id: int
    zed_id: int


@pytest.fixture
def seeded(db_path) -> Seeded:
    """Ally guild (Antica): Knight Bob, Druid Ann. Enemy guild (Secura): Zed."""
    with get_connection(db_path) as conn:
        guilds = GuildRepository(conn)
        ally = guilds.upsert(Guild(name="Red Rose", world="Antica"))
        enemy = guilds.upsert(
            Guild(name="Black Hand", world="Secura", guild_type=GuildType.ENEMY)
        )
        players = TrackedPlayerRepository(conn)
        bob = players.insert(
            TrackedPlayer(
                name="Knight Bob", world="Antica", guild_id=ally,
                level=120, vocation="Knight", last_death_check_at=T0,
            )
        )
        ann = players.insert(
            TrackedPlayer(
                name="Druid Ann", world="Antica", guild_id=ally,
                level=95, vocation="Druid", last_death_check_at=T0,
            )
        )
        zed = players.insert(
            TrackedPlayer(
                name="Zed", world="Secura", guild_id=enemy,
                player_type=PlayerType.EXTERNAL_ENEMY, level=300,
                vocation="Sorcerer", last_death_check_at=T0,
            )
        )
    return Seeded(ally, enemy, bob, ann, zed)


# ── Record builders ───────────────────────────────────────────────────────────

class Builders:
    """Factories for upstream records, exposed through the ``build`` fixture."""

    T0 = T0

    @staticmethod
    def death(
        seconds_after_t0: int,
        *killers: tuple[str, bool],
        level: int = 100,
        reason: Optional[str] = None,
    ) -> DeathEntry:
        """A ``DeathEntry`` at ``T0 + seconds`` from ``(name, is_player)`` pairs."""
        parsed = tuple(Killer(name=n, is_player=p) for n, p in killers)
        return DeathEntry(
            occurred_at=T0 + timedelta(seconds=seconds_after_t0),
            level=level,
            killers=parsed,
            reason=reason or f"Killed at Level {level} by " + ", ".join(k.name for k in parsed),
        )

    @staticmethod
    def character(name: str, *deaths: DeathEntry, world: str = "Antica") -> CharacterRecord:
        return CharacterRecord(
            name=name, world=world, level=120, vocation="Knight", deaths=deaths
        )

    @staticmethod
    def roster(world: str, *players: Union[str, tuple[str, int]]) -> WorldRoster:
        entries = []
        for p in players:
            name, level = (p, 100) if isinstance(p, str) else p
            entries.append(OnlineCharacter(name=name, level=level, vocation="Knight"))
        return WorldRoster(world=world, players=tuple(entries))

    @staticmethod
    def guild(name: str, world: str, *members: tuple[str, int, str]) -> GuildDetails:
        return GuildDetails(
            name=name,
            world=world,
            members=tuple(GuildMember(name=n, level=lv, vocation=v) for n, lv, v in members),
        )


@pytest.fixture
def build() -> type[Builders]:
    return Builders


# ── Fake client ───────────────────────────────────────────────────────────────

class FakeGameDataClient:
    """In-memory stand-in for ``GameDataClient``.

    Register responses (or exceptions) per lowercased key; unknown keys raise
    ``NotFound``. Every call is appended to ``calls``.
    """

    health_probe_world = "Antica"

    def __init__(self) -> None:
        self.characters: dict[str, Union[CharacterRecord, Exception]] = {}
        self.rosters: dict[str, Union[WorldRoster, Exception]] = {}
        self.guilds: dict[str, Union[GuildDetails, Exception]] = {}
        self.calls: list[tuple[str, str]] = []
        self.healthy = True
        self.limit = 60
        self.expired_evictions = 0
        self.closed = False

    def add_character(self, record: Union[CharacterRecord, Exception], name: Optional[str] = None) -> None:
        key = (name or record.name).lower()  # type: ignore[union-attr]
        self.characters[key] = record

    async def fetch_character(self, name: str, use_cache: bool = True) -> CharacterRecord:
        self.calls.append(("character", name))
        await asyncio.sleep(0)
        return self._lookup(self.characters, name)

    async def fetch_world_roster(self, world: str, use_cache: bool = True) -> WorldRoster:
        self.calls.append(("world", world))
        return self._lookup(self.rosters, world)

    async def fetch_guild_roster(
        self, guild_name: str, world: str, use_cache: bool = True
    ) -> GuildDetails:
        self.calls.append(("guild", guild_name))
        details = self._lookup(self.guilds, guild_name)
        if details.world.lower() != world.lower():
            raise ConfigurationError(f"{guild_name} is on {details.world}")
        return details

    async def health_check(self) -> bool:
        self.calls.append(("health", self.health_probe_world))
        return self.healthy

    def rate_limit_info(self) -> RateLimitState:
        return RateLimitState(limit=self.limit, remaining=self.limit, reset_at=0.0)

    def clear_expired(self) -> int:
        return self.expired_evictions

    async def aclose(self) -> None:
        self.closed = True

    @staticmethod
    def _lookup(table: dict, key: str):
        value = table.get(key.lower())
        if value is None:
            raise NotFound(f"{key} not found")
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def fake_client() -> FakeGameDataClient:
    return FakeGameDataClient()
