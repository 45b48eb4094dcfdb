"""
Error taxonomy for the guild monitoring engine.

  GuildMonitorError
  ├── GameDataError           — anything coming back from the game-data API
  │   ├── NotFound            — entity absent upstream; nothing to ingest
  │   ├── RateLimited         — throttled; caller backs off, never retries inline
  │   └── UpstreamUnavailable — 5xx, transport error, timeout, malformed payload
  ├── PersistenceConflict     — duplicate key at the storage boundary (benign)
  └── ConfigurationError      — malformed input, fatal to that call only

Per-entity errors (one player, one world, one guild) are caught and logged by
the task that processes the entity. Only startup failures propagate.
"""

from __future__ import annotations

from typing import Optional


class GuildMonitorError(Exception):
    """Base class for all guild monitor errors."""


class GameDataError(GuildMonitorError):
    """An error returned by, or while talking to, the game-data API.

    Attributes:
        status_code: HTTP status code, when a response was received.
        endpoint: Request path that failed.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class NotFound(GameDataError):
    """The requested character, world or guild does not exist upstream."""


class RateLimited(GameDataError):
    """The API throttled the request (HTTP 429).

    Attributes:
        retry_after: Seconds until the limiter resets, if known.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        endpoint: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status_code=status_code, endpoint=endpoint)
        self.retry_after = retry_after


class UpstreamUnavailable(GameDataError):
    """Transient upstream failure: 5xx, transport error or unreadable payload."""


class PersistenceConflict(GuildMonitorError):
    """A unique constraint rejected an insert; the row already exists."""


class ConfigurationError(GuildMonitorError):
    """Malformed input such as an empty world name or an unknown guild id."""
