"""
Request gate enforcing the upstream rate limit.

Every outbound call awaits ``RateLimitGate.acquire()`` first. The gate holds
its lock across the check and any wait, and reserves one unit of
``remaining`` per call, so concurrent callers cannot issue more requests
than the window allows before response headers come back.

Responses can return out of order, so a header only raises ``remaining``
when its ``x-ratelimit-reset`` moves past the newest window seen so far.
Within the same window the gate keeps the lower of its own count and the
header, and a late response cannot hand back units already reserved.

When ``remaining`` is zero the caller sleeps until ``reset_at``; if that
moment has already passed the window is assumed to have refilled to
``limit``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable, Mapping, Optional

from guild_monitor.client.records import RateLimitState

logger = logging.getLogger(__name__)

_HEADER_LIMIT = "x-ratelimit-limit"
_HEADER_REMAINING = "x-ratelimit-remaining"
_HEADER_RESET = "x-ratelimit-reset"

DEFAULT_RETRY_AFTER_SECONDS = 60.0


class RateLimitGate:
    """Shared limiter consulted before every request.

    Args:
        default_limit: Assumed requests per minute before any headers arrive.
        clock: Wall clock in epoch seconds (``reset_at`` is epoch-based).
        sleep: Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        default_limit: int = 60,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._state = RateLimitState(
            limit=default_limit,
            remaining=default_limit,
            reset_at=clock() + 60.0,
        )
        # newest x-ratelimit-reset the server has reported
        self._server_reset: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request may be issued, then reserve it."""
        async with self._lock:
            if self._state.remaining <= 0:
                wait = self._state.reset_at - self._clock()
                if wait > 0:
                    logger.info("Rate limit reached; waiting %.1fs for reset.", wait)
                    await self._sleep(wait)
                self._state.remaining = max(self._state.limit, 1)
            self._state.remaining -= 1

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Merge the server's rate-limit headers into local accounting.

        A reset later than any seen before opens a new window and its
        ``remaining`` is taken as is. Otherwise ``remaining`` can only go
        down.
        """
        limit = _parse_int(headers.get(_HEADER_LIMIT))
        remaining = _parse_int(headers.get(_HEADER_REMAINING))
        reset = _parse_int(headers.get(_HEADER_RESET))
        if limit is not None:
            self._state.limit = limit

        if reset is not None and (self._server_reset is None or reset > self._server_reset):
            self._server_reset = float(reset)
            self._state.reset_at = float(reset)
            if remaining is not None:
                self._state.remaining = remaining
        elif remaining is not None:
            if remaining > self._state.remaining:
                logger.debug(
                    "Ignoring stale rate-limit header remaining=%d (local %d).",
                    remaining, self._state.remaining,
                )
            self._state.remaining = min(self._state.remaining, remaining)

    def mark_throttled(self, retry_after: Optional[float] = None) -> float:
        """Record a 429 that carried no usable rate-limit headers.

        Returns:
            Seconds until the window is expected to reset.
        """
        delay = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
        self._state.remaining = 0
        self._state.reset_at = self._clock() + delay
        return delay

    def seconds_until_reset(self) -> float:
        return max(0.0, self._state.reset_at - self._clock())

    def snapshot(self) -> RateLimitState:
        """Copy of the current state; callers cannot mutate the gate through it."""
        return replace(self._state)


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        logger.debug("Ignoring unparseable rate-limit header value %r", value)
        return None
