"""
TibiaData v4 client: the single point of contact with the game-data API.

API:   https://api.tibiadata.com/v4
Docs:  https://docs.tibiadata.com

Endpoints used:
  GET /character/{name}   → profile + recent deaths      (cached 5 min)
  GET /world/{world}      → online players of one world  (cached 60 s)
  GET /guild/{name}       → guild details + member list  (cached 10 min)

Every network call goes through ``RateLimitGate.acquire()`` first and feeds
the response's ``x-ratelimit-*`` headers back into the gate. The client
never retries on its own: a 429 surfaces as ``RateLimited`` and the caller
decides what to do.

Error mapping:
  404, ``information.status.http_code == 404`` or missing object → NotFound
  429                                                             → RateLimited
  5xx, transport error, timeout, unreadable JSON or payload       → UpstreamUnavailable
  empty name/world, guild on a different world                    → ConfigurationError

Usage::

    async with GameDataClient.from_config(config) as client:
        roster = await client.fetch_world_roster("Antica")
        print(sorted(roster.names))
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx

from guild_monitor.client.cache import ResponseCache
from guild_monitor.client.rate_limit import RateLimitGate
from guild_monitor.client.records import (
    ApiCall,
    CharacterRecord,
    DeathEntry,
    GuildDetails,
    GuildMember,
    OnlineCharacter,
    RateLimitState,
    WorldRoster,
)
from guild_monitor.config import AppConfig
from guild_monitor.exceptions import (
    ConfigurationError,
    GameDataError,
    NotFound,
    RateLimited,
    UpstreamUnavailable,
)
from guild_monitor.models.death import Killer
from guild_monitor.utils.time_utils import parse_api_timestamp, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

UsageRecorder = Callable[[ApiCall], None]


class GameDataClient:
    """Async, cached, rate-limited client for the TibiaData v4 API.

    One instance is owned by the supervisor and shared by every task; the
    cache and the rate-limit gate are therefore process-wide.

    Args:
        base_url: API root, e.g. ``"https://api.tibiadata.com/v4"``.
        timeout_seconds: Per-request timeout.
        user_agent: ``User-Agent`` header value.
        character_ttl_seconds: Cache lifetime of character lookups.
        world_ttl_seconds: Cache lifetime of world rosters.
        guild_ttl_seconds: Cache lifetime of guild rosters.
        default_rate_limit: Requests per minute assumed until headers arrive.
        health_probe_world: World fetched (uncached) by ``health_check()``.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        usage_recorder: Called with an ``ApiCall`` after every network call,
            in a worker thread so a slow database never blocks the loop.
        gate: Pre-built rate-limit gate; one is created if omitted.
        cache: Pre-built response cache; one is created if omitted.
    """

    def __init__(
        self,
        base_url: str = "https://api.tibiadata.com/v4",
        timeout_seconds: float = 10.0,
        user_agent: str = "TibiaGuildMonitor/1.0",
        character_ttl_seconds: float = 300,
        world_ttl_seconds: float = 60,
        guild_ttl_seconds: float = 600,
        default_rate_limit: int = 60,
        health_probe_world: str = "Antica",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        usage_recorder: Optional[UsageRecorder] = None,
        gate: Optional[RateLimitGate] = None,
        cache: Optional[ResponseCache] = None,
    ) -> None:
        self.character_ttl_seconds = character_ttl_seconds
        self.world_ttl_seconds = world_ttl_seconds
        self.guild_ttl_seconds = guild_ttl_seconds
        self.default_rate_limit = default_rate_limit
        self.health_probe_world = health_probe_world
        self.usage_recorder = usage_recorder
        self._gate = gate or RateLimitGate(default_limit=default_rate_limit)
        self._cache = cache or ResponseCache()
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        usage_recorder: Optional[UsageRecorder] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GameDataClient":
        api = config.api
        return cls(
            base_url=api.base_url,
            timeout_seconds=api.timeout_seconds,
            user_agent=api.user_agent,
            character_ttl_seconds=api.character_ttl_seconds,
            world_ttl_seconds=api.world_ttl_seconds,
            guild_ttl_seconds=api.guild_ttl_seconds,
            default_rate_limit=api.default_rate_limit,
            health_probe_world=api.health_probe_world,
            transport=transport,
            usage_recorder=usage_recorder,
        )

    async def __aenter__(self) -> "GameDataClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Public fetches ─────────────────────────────────────────────────────────

    async def fetch_character(self, name: str, use_cache: bool = True) -> CharacterRecord:
        """Fetch a character profile and its recent deaths.

        Args:
            name: Character name (case-insensitive upstream).
            use_cache: When ``False``, skip the cache read (the fresh result is
                still cached).

        Raises:
            ConfigurationError: If ``name`` is blank.
            NotFound: If the character does not exist.
            RateLimited: If the API throttled the call.
            UpstreamUnavailable: On 5xx, transport errors or bad payloads.
        """
        name = _require(name, "Character name")
        return await self._get(
            endpoint=f"/character/{quote(name, safe='')}",
            cache_key=f"character:{name.lower()}",
            ttl=self.character_ttl_seconds,
            parse=_parse_character,
            use_cache=use_cache,
        )

    async def fetch_world_roster(self, world: str, use_cache: bool = True) -> WorldRoster:
        """Fetch the set of characters currently online in ``world``."""
        world = _require(world, "World name")
        return await self._get(
            endpoint=f"/world/{quote(world, safe='')}",
            cache_key=f"world:{world.lower()}",
            ttl=self.world_ttl_seconds,
            parse=_parse_world,
            use_cache=use_cache,
        )

    async def fetch_guild_roster(
        self, guild_name: str, world: str, use_cache: bool = True
    ) -> GuildDetails:
        """Fetch a guild's member list and check it lives on ``world``.

        Raises:
            ConfigurationError: If either argument is blank, or the guild
                exists on a different world.
        """
        guild_name = _require(guild_name, "Guild name")
        world = _require(world, "World name")
        details = await self._get(
            endpoint=f"/guild/{quote(guild_name, safe='')}",
            cache_key=f"guild:{guild_name.lower()}:{world.lower()}",
            ttl=self.guild_ttl_seconds,
            parse=_parse_guild,
            use_cache=use_cache,
        )
        if details.world.lower() != world.lower():
            raise ConfigurationError(
                f"Guild '{guild_name}' is on world '{details.world}', not '{world}'."
            )
        return details

    async def health_check(self) -> bool:
        """Uncached roster fetch of the probe world; ``True`` if it succeeded."""
        try:
            await self.fetch_world_roster(self.health_probe_world, use_cache=False)
        except GameDataError as exc:
            logger.warning("Game-data API health check failed: %s", exc)
            return False
        return True

    # ── Cache / rate-limit introspection ───────────────────────────────────────

    def rate_limit_info(self) -> RateLimitState:
        return self._gate.snapshot()

    def clear_expired(self) -> int:
        return self._cache.clear_expired()

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        return self._cache.clear(pattern)

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _get(
        self,
        endpoint: str,
        cache_key: str,
        ttl: float,
        parse: Callable[[dict[str, Any]], T],
        use_cache: bool,
    ) -> T:
        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        payload = await self._request(endpoint)
        try:
            result = parse(payload)
        except NotFound as exc:
            exc.endpoint = endpoint
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailable(
                f"Malformed payload from {endpoint}: {exc!r}", endpoint=endpoint
            ) from exc

        self._cache.set(cache_key, result, ttl)
        return result

    async def _request(self, endpoint: str) -> dict[str, Any]:
        """Issue one GET through the gate and map failures to the error taxonomy."""
        await self._gate.acquire()

        requested_at = utcnow()
        started = time.perf_counter()
        try:
            response = await self._http.get(endpoint)
        except httpx.TimeoutException as exc:
            await self._record(endpoint, None, started, requested_at)
            raise UpstreamUnavailable(
                f"Timed out requesting {endpoint}", endpoint=endpoint
            ) from exc
        except httpx.HTTPError as exc:
            await self._record(endpoint, None, started, requested_at)
            raise UpstreamUnavailable(
                f"Transport error requesting {endpoint}: {exc}", endpoint=endpoint
            ) from exc

        has_limit_headers = "x-ratelimit-remaining" in response.headers
        self._gate.update_from_headers(response.headers)
        await self._record(endpoint, response.status_code, started, requested_at)

        status = response.status_code
        if status == 404:
            raise NotFound(f"Not found: {endpoint}", status_code=404, endpoint=endpoint)
        if status == 429:
            if has_limit_headers:
                retry_after = self._gate.seconds_until_reset()
            else:
                retry_after = self._gate.mark_throttled(
                    _retry_after(response.headers.get("retry-after"))
                )
            raise RateLimited(
                f"Rate limit exceeded requesting {endpoint}",
                endpoint=endpoint,
                retry_after=retry_after,
            )
        if status >= 500:
            raise UpstreamUnavailable(
                f"Server error {status} from {endpoint}",
                status_code=status,
                endpoint=endpoint,
            )
        if status >= 400:
            raise GameDataError(
                f"Request to {endpoint} failed with status {status}",
                status_code=status,
                endpoint=endpoint,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(
                f"Invalid JSON from {endpoint}", status_code=status, endpoint=endpoint
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamUnavailable(
                f"Unexpected payload type from {endpoint}", endpoint=endpoint
            )

        upstream_code = (
            ((payload.get("information") or {}).get("status") or {}).get("http_code")
        )
        if upstream_code == 404:
            raise NotFound(f"Not found: {endpoint}", status_code=404, endpoint=endpoint)
        return payload

    async def _record(
        self,
        endpoint: str,
        status_code: Optional[int],
        started: float,
        requested_at: datetime,
    ) -> None:
        if self.usage_recorder is None:
            return
        call = ApiCall(
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=int((time.perf_counter() - started) * 1000),
            requested_at=requested_at,
        )
        try:
            await asyncio.to_thread(self.usage_recorder, call)
        except Exception as exc:
            logger.error("Failed to record API usage for %s: %s", endpoint, exc)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _require(value: str, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{label} must be a non-empty string, got {value!r}.")
    return value.strip()


def _retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _flag(value: Any) -> bool:
    """Upstream flags are booleans, or strings where empty means false."""
    if isinstance(value, str):
        return bool(value.strip()) and value.strip().lower() not in ("false", "0")
    return bool(value)


# ── Payload parsers ────────────────────────────────────────────────────────────


def _parse_killer(raw: dict[str, Any]) -> Killer:
    return Killer(
        name=str(raw.get("name", "")),
        is_player=_flag(raw.get("player", False)),
        is_summon=_flag(raw.get("summon", False)),
    )


def _parse_death(raw: dict[str, Any]) -> DeathEntry:
    stamp = raw.get("time") or raw.get("date")
    if not stamp:
        raise ValueError(f"Death entry without timestamp: {raw!r}")
    return DeathEntry(
        occurred_at=parse_api_timestamp(stamp),
        level=int(raw.get("level", 0)),
        killers=tuple(_parse_killer(k) for k in raw.get("killers") or []),
        reason=str(raw.get("reason", "")),
    )


def _parse_character(payload: dict[str, Any]) -> CharacterRecord:
    wrapper = payload.get("character")
    if not wrapper or not wrapper.get("character"):
        raise NotFound("Character not found in payload")
    info = wrapper["character"]
    guild = info.get("guild") or {}
    return CharacterRecord(
        name=info["name"],
        world=info.get("world", ""),
        level=int(info.get("level", 0)),
        vocation=info.get("vocation", "None"),
        guild_name=guild.get("name"),
        deaths=tuple(_parse_death(d) for d in wrapper.get("deaths") or []),
    )


def _parse_world(payload: dict[str, Any]) -> WorldRoster:
    world = payload.get("world")
    if not world:
        raise NotFound("World not found in payload")
    online = world.get("online_players")
    if online is None:
        online = (world.get("players") or {}).get("online") or []
    return WorldRoster(
        world=world.get("name", ""),
        players=tuple(
            OnlineCharacter(
                name=p["name"],
                level=int(p.get("level", 0)),
                vocation=p.get("vocation", "None"),
            )
            for p in online
        ),
    )


def _parse_guild(payload: dict[str, Any]) -> GuildDetails:
    guild = payload.get("guild")
    if not guild or not guild.get("name"):
        raise NotFound("Guild not found in payload")
    return GuildDetails(
        name=guild["name"],
        world=guild.get("world", ""),
        members=tuple(
            GuildMember(
                name=m["name"],
                level=int(m.get("level", 0)),
                vocation=m.get("vocation", "None"),
                rank=m.get("rank", ""),
                status=m.get("status", "offline"),
            )
            for m in guild.get("members") or []
        ),
    )
