"""
Batch Dispatcher: fetch many characters under a concurrency ceiling.

Names are split into chunks of ``concurrency``. A chunk's lookups run
concurrently and are all awaited; a failed or timed-out lookup is logged and
left out of the result. Between chunks the dispatcher sleeps long enough
that ``chunks_per_minute * concurrency`` stays within the rate limit the
client last observed. No delay follows the last chunk.

Only catastrophic input (``concurrency < 1`` or a non-string name) raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional

from guild_monitor.client.game_data_client import GameDataClient
from guild_monitor.client.records import CharacterRecord
from guild_monitor.config import AppConfig
from guild_monitor.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def dedupe_names(names: Iterable[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping the first spelling seen."""
    seen: set[str] = set()
    unique: list[str] = []
    for name in names:
        key = name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(name)
    return unique


def chunked(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchDispatcher:
    """Bounded-concurrency fan-out over ``GameDataClient.fetch_character``.

    Args:
        client: Shared game-data client.
        concurrency: Default number of in-flight lookups per chunk.
        per_name_timeout: Seconds before a single lookup is abandoned.
        default_rate_limit: Requests per minute used when the client reports
            no limit.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used for inter-chunk delays, injectable for tests.
    """

    def __init__(
        self,
        client: GameDataClient,
        concurrency: int = 5,
        per_name_timeout: float = 30.0,
        default_rate_limit: int = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.concurrency = concurrency
        self.per_name_timeout = per_name_timeout
        self.default_rate_limit = default_rate_limit
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, client: GameDataClient, config: AppConfig) -> "BatchDispatcher":
        return cls(
            client,
            concurrency=config.batch.concurrency,
            per_name_timeout=config.batch.per_name_timeout_seconds,
            default_rate_limit=config.api.default_rate_limit,
        )

    async def fetch_many(
        self,
        names: Iterable[str],
        concurrency: Optional[int] = None,
        use_cache: bool = True,
    ) -> dict[str, CharacterRecord]:
        """Fetch every character in ``names``.

        Args:
            names: Character names; duplicates (case-insensitive) are fetched once.
            concurrency: Overrides the dispatcher default for this call.
            use_cache: Passed through to ``fetch_character``.

        Returns:
            Mapping of lowercased requested name to ``CharacterRecord``. Names
            whose lookup failed are absent.

        Raises:
            ConfigurationError: If ``concurrency < 1`` or a name is not a string.
        """
        size = self.concurrency if concurrency is None else concurrency
        if not isinstance(size, int) or size < 1:
            raise ConfigurationError(
                f"concurrency must be a positive integer, got {size!r}."
            )

        names = list(names)
        for name in names:
            if not isinstance(name, str):
                raise ConfigurationError(f"Character names must be strings, got {name!r}.")

        results: dict[str, CharacterRecord] = {}
        chunks = chunked(dedupe_names(names), size)
        for index, chunk in enumerate(chunks):
            started = self._clock()
            outcomes = await asyncio.gather(
                *(self._fetch_one(name, use_cache) for name in chunk),
                return_exceptions=True,
            )
            for name, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning("Failed to fetch character %s: %s", name, outcome)
                    continue
                results[name.lower()] = outcome

            if index < len(chunks) - 1:
                delay = self._chunk_delay(size, self._clock() - started)
                if delay > 0:
                    await self._sleep(delay)

        logger.debug(
            "Fetched %d/%d characters in %d chunk(s).",
            len(results), len(names), len(chunks),
        )
        return results

    async def _fetch_one(self, name: str, use_cache: bool) -> CharacterRecord:
        try:
            return await asyncio.wait_for(
                self.client.fetch_character(name, use_cache=use_cache),
                timeout=self.per_name_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"Lookup of '{name}' exceeded {self.per_name_timeout:.0f}s"
            ) from exc

    def _chunk_delay(self, chunk_size: int, elapsed: float) -> float:
        """Seconds to wait so that chunk throughput stays within the rate limit."""
        limit = self.client.rate_limit_info().limit or self.default_rate_limit
        return max(0.0, 60.0 * chunk_size / limit - elapsed)
