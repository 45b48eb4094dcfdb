"""Tests for BatchDispatcher.fetch_many."""

from __future__ import annotations

import asyncio

import pytest

from guild_monitor.client.batch import BatchDispatcher, dedupe_names
from guild_monitor.exceptions import ConfigurationError, UpstreamUnavailable


async def _no_sleep(seconds: float) -> None:
    return None


def _dispatcher(client, **kwargs) -> BatchDispatcher:
    kwargs.setdefault("sleep", _no_sleep)
    kwargs.setdefault("clock", lambda: 0.0)
    return BatchDispatcher(client, **kwargs)


class TestFetchMany:
    def test_one_failure_does_not_abort_the_batch(self, fake_client, build):
        names = [f"Player {i}" for i in range(1, 11)]
        for name in names:
            fake_client.add_character(build.character(name))
        fake_client.add_character(UpstreamUnavailable("boom"), name="Player 3")

        result = asyncio.run(_dispatcher(fake_client, concurrency=5).fetch_many(names))

        assert len(result) == 9
        assert "player 3" not in result
        assert result["player 10"].name == "Player 10"

    def test_keys_are_lowercased(self, fake_client, build):
        fake_client.add_character(build.character("Knight Bob"))
        result = asyncio.run(_dispatcher(fake_client).fetch_many(["KNIGHT BOB"]))
        assert list(result) == ["knight bob"]

    def test_empty_input_is_a_no_op(self, fake_client):
        assert asyncio.run(_dispatcher(fake_client).fetch_many([])) == {}
        assert fake_client.calls == []

    def test_duplicates_fetched_once(self, fake_client, build):
        fake_client.add_character(build.character("Knight Bob"))
        asyncio.run(_dispatcher(fake_client).fetch_many(["Knight Bob", "knight bob"]))
        assert fake_client.calls == [("character", "Knight Bob")]

    def test_invalid_concurrency_raises(self, fake_client):
        with pytest.raises(ConfigurationError):
            asyncio.run(_dispatcher(fake_client).fetch_many(["a"], concurrency=0))

    def test_non_string_name_raises(self, fake_client):
        with pytest.raises(ConfigurationError):
            asyncio.run(_dispatcher(fake_client).fetch_many(["a", 42]))

    def test_hanging_lookup_is_abandoned(self, fake_client, build):
        fake_client.add_character(build.character("Knight Bob"))
        original = fake_client.fetch_character

        async def fetch(name, use_cache=True):
            if name == "Stuck":
                await asyncio.Event().wait()
            return await original(name, use_cache)

        fake_client.fetch_character = fetch
        dispatcher = _dispatcher(fake_client, per_name_timeout=0.01)
        result = asyncio.run(dispatcher.fetch_many(["Stuck", "Knight Bob"]))
        assert list(result) == ["knight bob"]


class TestConcurrencyAndPacing:
    def test_in_flight_never_exceeds_concurrency(self, fake_client, build):
        state = {"in_flight": 0, "peak": 0}

        async def fetch(name, use_cache=True):
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
            await asyncio.sleep(0)
            state["in_flight"] -= 1
            return build.character(name)

        fake_client.fetch_character = fetch
        names = [f"P{i}" for i in range(12)]
        result = asyncio.run(_dispatcher(fake_client, concurrency=4).fetch_many(names))
        assert len(result) == 12
        assert state["peak"] == 4

    def test_delay_between_chunks_follows_rate_limit(self, fake_client, build):
        delays: list[float] = []

        async def record_sleep(seconds):
            delays.append(seconds)

        for i in range(12):
            fake_client.add_character(build.character(f"P{i}"))
        fake_client.limit = 60

        dispatcher = _dispatcher(fake_client, concurrency=5, sleep=record_sleep)
        asyncio.run(dispatcher.fetch_many([f"P{i}" for i in range(12)]))

        # 3 chunks → 2 gaps of 60 * 5 / 60 seconds; none after the last chunk
        assert delays == [5.0, 5.0]

    def test_unknown_limit_uses_default(self, fake_client, build):
        delays: list[float] = []

        async def record_sleep(seconds):
            delays.append(seconds)

        for i in range(4):
            fake_client.add_character(build.character(f"P{i}"))
        fake_client.limit = 0

        dispatcher = _dispatcher(
            fake_client, concurrency=2, default_rate_limit=30, sleep=record_sleep
        )
        asyncio.run(dispatcher.fetch_many([f"P{i}" for i in range(4)]))
        assert delays == [4.0]


def test_dedupe_names_keeps_first_spelling():
    assert dedupe_names(["Bob", "BOB", "Ann", "bob"]) == ["Bob", "Ann"]
