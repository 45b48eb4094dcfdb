"""Tests for GameDataClient using httpx.MockTransport (no network)."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone

import httpx
import pytest

from guild_monitor.client.cache import ResponseCache
from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.rate_limit import RateLimitGate
from guild_monitor.exceptions import (
    ConfigurationError,
    NotFound,
    RateLimited,
    UpstreamUnavailable,
)

# ── Payload fixtures ───────────────────────────────────────────────────────────

CHARACTER_PAYLOAD = {
    "character": {
        "character": {
            "name": "Knight Bob",
            "world": "Antica",
            "level": 120,
            "vocation": "Elite Knight",
            "guild": {"name": "Red Rose", "rank": "Member"},
        },
        "deaths": [
            {
                "time": "2024-03-01T18:00:05Z",
                "level": 119,
                "killers": [
                    {"name": "Dragon", "player": False, "traded": False, "summon": ""},
                    {"name": "Evil Mage", "player": True, "traded": False, "summon": ""},
                ],
                "assists": [],
                "reason": "Killed at Level 119 by a dragon and Evil Mage.",
            },
            {
                "time": "2024-02-28T10:00:00Z",
                "level": 118,
                "killers": [{"name": "Rat", "player": False, "summon": ""}],
                "reason": "Killed at Level 118 by a rat.",
            },
        ],
    },
    "information": {"status": {"http_code": 200}},
}

WORLD_PAYLOAD = {
    "world": {
        "name": "Antica",
        "online_players": [
            {"name": "Knight Bob", "level": 121, "vocation": "Elite Knight"},
            {"name": "Druid Ann", "level": 95, "vocation": "Elder Druid"},
        ],
    },
    "information": {"status": {"http_code": 200}},
}

GUILD_PAYLOAD = {
    "guild": {
        "name": "Red Rose",
        "world": "Antica",
        "members": [
            {"name": "Knight Bob", "rank": "Leader", "vocation": "Elite Knight",
             "level": 120, "status": "online"},
            {"name": "Druid Ann", "rank": "Member", "vocation": "Elder Druid",
             "level": 95, "status": "offline"},
        ],
    },
    "information": {"status": {"http_code": 200}},
}


class FakeClock:
    """Epoch clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _client(handler, **kwargs) -> GameDataClient:
    return GameDataClient(transport=httpx.MockTransport(handler), **kwargs)


def _run(coro):
    return asyncio.run(coro)


async def _fetch_and_close(client: GameDataClient, method: str, *args, **kwargs):
    try:
        return await getattr(client, method)(*args, **kwargs)
    finally:
        await client.aclose()


# ── Parsing ────────────────────────────────────────────────────────────────────

class TestParsing:
    def test_character_with_deaths(self):
        client = _client(lambda request: httpx.Response(200, json=CHARACTER_PAYLOAD))
        record = _run(_fetch_and_close(client, "fetch_character", "Knight Bob"))

        assert record.name == "Knight Bob"
        assert record.guild_name == "Red Rose"
        assert len(record.deaths) == 2
        first = record.deaths[0]
        assert first.occurred_at == datetime(2024, 3, 1, 18, 0, 5, tzinfo=timezone.utc)
        assert [k.name for k in first.killers] == ["Dragon", "Evil Mage"]
        assert first.killers[1].is_player is True
        assert first.killers[0].is_summon is False

    def test_world_roster_names_are_lowercased(self):
        client = _client(lambda request: httpx.Response(200, json=WORLD_PAYLOAD))
        roster = _run(_fetch_and_close(client, "fetch_world_roster", "Antica"))
        assert roster.names == frozenset({"knight bob", "druid ann"})
        assert roster.level_of("KNIGHT BOB") == 121

    def test_guild_roster(self):
        client = _client(lambda request: httpx.Response(200, json=GUILD_PAYLOAD))
        details = _run(_fetch_and_close(client, "fetch_guild_roster", "Red Rose", "antica"))
        assert [m.name for m in details.members] == ["Knight Bob", "Druid Ann"]
        assert details.online_count == 1
        assert details.offline_count == 1

    def test_request_path_and_headers(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=CHARACTER_PAYLOAD)

        _run(_fetch_and_close(_client(handler), "fetch_character", "Knight Bob"))
        assert seen[0].url.path == "/v4/character/Knight Bob"
        assert seen[0].headers["accept"] == "application/json"
        assert seen[0].headers["user-agent"] == "TibiaGuildMonitor/1.0"


# ── Caching ────────────────────────────────────────────────────────────────────

class TestCaching:
    def test_second_call_is_served_from_cache(self):
        hits = []

        def handler(request):
            hits.append(request)
            return httpx.Response(200, json=CHARACTER_PAYLOAD)

        async def scenario():
            client = _client(handler)
            try:
                await client.fetch_character("Knight Bob")
                await client.fetch_character("knight bob")
            finally:
                await client.aclose()

        _run(scenario())
        assert len(hits) == 1

    def test_expired_entry_triggers_refetch(self):
        hits = []
        clock = FakeClock(start=0.0)

        def handler(request):
            hits.append(request)
            return httpx.Response(200, json=WORLD_PAYLOAD)

        async def scenario():
            client = _client(handler, cache=ResponseCache(clock=clock), world_ttl_seconds=60)
            try:
                await client.fetch_world_roster("Antica")
                clock.now = 59.0
                await client.fetch_world_roster("Antica")
                clock.now = 60.0
                await client.fetch_world_roster("Antica")
            finally:
                await client.aclose()

        _run(scenario())
        assert len(hits) == 2

    def test_use_cache_false_bypasses_read(self):
        hits = []

        def handler(request):
            hits.append(request)
            return httpx.Response(200, json=CHARACTER_PAYLOAD)

        async def scenario():
            client = _client(handler)
            try:
                await client.fetch_character("Knight Bob")
                await client.fetch_character("Knight Bob", use_cache=False)
                await client.fetch_character("Knight Bob")
            finally:
                await client.aclose()

        _run(scenario())
        assert len(hits) == 2

    def test_clear_cache_by_pattern(self):
        def handler(request):
            if "/world/" in request.url.path:
                return httpx.Response(200, json=WORLD_PAYLOAD)
            return httpx.Response(200, json=CHARACTER_PAYLOAD)

        async def scenario():
            client = _client(handler)
            try:
                await client.fetch_character("Knight Bob")
                await client.fetch_world_roster("Antica")
                return client.clear_cache("world"), client.clear_cache()
            finally:
                await client.aclose()

        assert _run(scenario()) == (1, 1)


# ── Error mapping ──────────────────────────────────────────────────────────────

class TestErrors:
    def test_http_404_is_not_found(self):
        client = _client(lambda request: httpx.Response(404, json={}))
        with pytest.raises(NotFound):
            _run(_fetch_and_close(client, "fetch_character", "Nobody"))

    def test_payload_status_404_is_not_found(self):
        payload = {"character": {}, "information": {"status": {"http_code": 404}}}
        client = _client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(NotFound):
            _run(_fetch_and_close(client, "fetch_character", "Nobody"))

    def test_missing_object_is_not_found(self):
        client = _client(lambda request: httpx.Response(200, json={"information": {}}))
        with pytest.raises(NotFound):
            _run(_fetch_and_close(client, "fetch_world_roster", "Atlantis"))

    def test_server_error_is_upstream_unavailable(self):
        client = _client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(UpstreamUnavailable) as exc_info:
            _run(_fetch_and_close(client, "fetch_character", "Knight Bob"))
        assert exc_info.value.status_code == 503

    def test_transport_error_is_upstream_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailable):
            _run(_fetch_and_close(_client(handler), "fetch_character", "Knight Bob"))

    def test_invalid_json_is_upstream_unavailable(self):
        client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(UpstreamUnavailable):
            _run(_fetch_and_close(client, "fetch_character", "Knight Bob"))

    def test_malformed_death_is_upstream_unavailable(self):
        payload = {
            "character": {
                "character": {"name": "Knight Bob", "world": "Antica"},
                "deaths": [{"level": 10, "killers": []}],
            }
        }
        client = _client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(UpstreamUnavailable):
            _run(_fetch_and_close(client, "fetch_character", "Knight Bob"))

    def test_429_without_headers_is_rate_limited(self):
        clock = FakeClock()
        gate = RateLimitGate(clock=clock, sleep=clock.sleep)
        client = _client(
            lambda request: httpx.Response(429, headers={"retry-after": "30"}), gate=gate
        )
        with pytest.raises(RateLimited) as exc_info:
            _run(_fetch_and_close(client, "fetch_character", "Knight Bob"))

        assert exc_info.value.retry_after == 30.0
        state = gate.snapshot()
        assert state.remaining == 0
        assert state.reset_at == clock.now + 30.0

    def test_blank_name_fails_before_network(self):
        hits = []

        def handler(request):
            hits.append(request)
            return httpx.Response(200, json=CHARACTER_PAYLOAD)

        with pytest.raises(ConfigurationError):
            _run(_fetch_and_close(_client(handler), "fetch_world_roster", "  "))
        assert hits == []

    def test_guild_on_other_world_is_configuration_error(self):
        client = _client(lambda request: httpx.Response(200, json=GUILD_PAYLOAD))
        with pytest.raises(ConfigurationError):
            _run(_fetch_and_close(client, "fetch_guild_roster", "Red Rose", "Secura"))


# ── Rate limiting ──────────────────────────────────────────────────────────────

class TestRateLimit:
    def test_headers_update_rate_limit_info(self):
        headers = {
            "x-ratelimit-limit": "100",
            "x-ratelimit-remaining": "42",
            "x-ratelimit-reset": "1700000060",
        }
        client = _client(lambda request: httpx.Response(200, json=WORLD_PAYLOAD, headers=headers))

        async def scenario():
            try:
                await client.fetch_world_roster("Antica")
                return client.rate_limit_info()
            finally:
                await client.aclose()

        info = _run(scenario())
        assert (info.limit, info.remaining, info.reset_at) == (100, 42, 1700000060.0)

    def test_call_beyond_remaining_waits_for_reset(self):
        clock = FakeClock(start=1_700_000_000.0)
        reset_at = 1_700_000_060
        issued_at: list[float] = []

        def handler(request):
            issued_at.append(clock.now)
            remaining = max(0, 2 - len(issued_at))
            return httpx.Response(
                200,
                json=CHARACTER_PAYLOAD,
                headers={
                    "x-ratelimit-limit": "2",
                    "x-ratelimit-remaining": str(remaining),
                    "x-ratelimit-reset": str(reset_at),
                },
            )

        async def scenario():
            gate = RateLimitGate(default_limit=2, clock=clock, sleep=clock.sleep)
            client = _client(handler, gate=gate)
            try:
                for _ in range(3):
                    await client.fetch_character("Knight Bob", use_cache=False)
            finally:
                await client.aclose()

        _run(scenario())
        assert len(issued_at) == 3
        assert issued_at[0] < reset_at and issued_at[1] < reset_at
        assert issued_at[2] >= reset_at
        assert clock.sleeps == [60.0]

    def test_out_of_order_response_does_not_undo_reservation(self):
        clock = FakeClock(start=1000.0)
        entered = asyncio.Event()
        release = asyncio.Event()
        issued_at: list[float] = []

        async def handler(request):
            issued_at.append(clock.now)
            if len(issued_at) == 1:
                entered.set()
                await release.wait()
                remaining, reset = 1, 1060  # counted before the second call
            elif len(issued_at) == 2:
                remaining, reset = 0, 1060
            else:
                remaining, reset = 1, 1120
            return httpx.Response(
                200,
                json=WORLD_PAYLOAD,
                headers={
                    "x-ratelimit-limit": "2",
                    "x-ratelimit-remaining": str(remaining),
                    "x-ratelimit-reset": str(reset),
                },
            )

        async def scenario():
            gate = RateLimitGate(default_limit=2, clock=clock, sleep=clock.sleep)
            gate.update_from_headers({"x-ratelimit-remaining": "2", "x-ratelimit-reset": "1060"})
            client = _client(handler, gate=gate)
            try:
                slow = asyncio.create_task(client.fetch_world_roster("Antica", use_cache=False))
                await entered.wait()
                await client.fetch_world_roster("Antica", use_cache=False)
                release.set()
                await slow
                assert client.rate_limit_info().remaining == 0
                await client.fetch_world_roster("Antica", use_cache=False)
            finally:
                await client.aclose()

        _run(scenario())
        assert len(issued_at) == 3
        assert issued_at[2] >= 1060.0
        assert clock.sleeps == [60.0]


# ── Health and usage ───────────────────────────────────────────────────────────

class TestHealthAndUsage:
    def test_health_check_true_on_success(self):
        client = _client(lambda request: httpx.Response(200, json=WORLD_PAYLOAD))
        assert _run(_fetch_and_close(client, "health_check")) is True

    def test_health_check_false_on_failure(self):
        client = _client(lambda request: httpx.Response(500))
        assert _run(_fetch_and_close(client, "health_check")) is False

    def test_health_check_is_never_cached(self):
        hits = []

        def handler(request):
            hits.append(request)
            return httpx.Response(200, json=WORLD_PAYLOAD)

        async def scenario():
            client = _client(handler)
            try:
                await client.health_check()
                await client.health_check()
            finally:
                await client.aclose()

        _run(scenario())
        assert len(hits) == 2

    def test_usage_recorder_sees_network_calls_only(self):
        calls = []
        client = _client(
            lambda request: httpx.Response(200, json=CHARACTER_PAYLOAD),
            usage_recorder=calls.append,
        )

        async def scenario():
            try:
                await client.fetch_character("Knight Bob")
                await client.fetch_character("Knight Bob")
            finally:
                await client.aclose()

        _run(scenario())
        assert len(calls) == 1
        assert calls[0].endpoint == "/character/Knight%20Bob"
        assert calls[0].status_code == 200

    def test_usage_recorder_runs_off_the_event_loop_thread(self):
        threads = []

        def recorder(call):
            threads.append(threading.get_ident())

        async def scenario():
            client = _client(
                lambda request: httpx.Response(200, json=WORLD_PAYLOAD),
                usage_recorder=recorder,
            )
            try:
                await client.fetch_world_roster("Antica")
            finally:
                await client.aclose()
            return threading.get_ident()

        loop_thread = _run(scenario())
        assert len(threads) == 1
        assert threads[0] != loop_thread

    def test_failing_usage_recorder_does_not_fail_the_call(self):
        def recorder(call):
            raise sqlite3.OperationalError("database is locked")

        client = _client(
            lambda request: httpx.Response(200, json=WORLD_PAYLOAD),
            usage_recorder=recorder,
        )
        roster = _run(_fetch_and_close(client, "fetch_world_roster", "Antica"))
        assert roster is not None
