"""
In-memory TTL cache for API responses.

Eviction is lazy (an expired entry is dropped when read) plus an explicit
``clear_expired()`` sweep run by the supervisor's cleanup task. An entry is
never returned once ``now >= expires_at``.

The cache is shared by every task using the client, so all access goes
through one lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class ResponseCache:
    """Key/value cache with per-entry expiry.

    Args:
        clock: Returns the current time in seconds. Defaults to ``time.monotonic``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key, value=value, expires_at=self._clock() + ttl_seconds
            )

    def clear_expired(self) -> int:
        """Drop every expired entry. Returns the number dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired cache entries.", len(expired))
        return len(expired)

    def clear(self, pattern: Optional[str] = None) -> int:
        """Drop all entries, or only those whose key contains ``pattern``."""
        with self._lock:
            if pattern is None:
                n = len(self._entries)
                self._entries.clear()
                return n
            doomed = [k for k in self._entries if pattern in k]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
