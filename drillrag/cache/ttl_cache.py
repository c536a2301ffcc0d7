"""
Bounded TTL cache with insertion-order eviction.

Semantics:
  • get()   — returns None on miss or on an expired entry (expired entries
              are removed on read). A miss never raises.
  • set()   — last writer wins. Re-setting a key counts as a fresh insertion,
              so it moves to the back of the eviction queue.
  • bound   — when the cache exceeds max_entries the OLDEST-INSERTED entry is
              evicted. Reads do not refresh position (this is not an LRU).
  • sweep() — removes every expired entry. start_sweeper() runs it
              periodically on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key:       str
    value:     Any
    timestamp: float


def normalize_query(text: str) -> str:
    """Case-insensitive, whitespace-collapsed form of a query string."""
    return " ".join(text.lower().split())


def make_cache_key(query: str, identity: str | None = None) -> str:
    """Cache key from a normalized query, optionally scoped to a caller identity."""
    normalized = normalize_query(query)
    return f"{identity}::{normalized}" if identity else normalized


class TTLCache:
    def __init__(
        self,
        name:        str,
        max_entries: int   = 100,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.name        = name
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock   = clock
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: asyncio.Task | None = None

        self.hits      = 0
        self.misses    = 0
        self.evictions = 0
        self.expired   = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry, self._clock())

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self.ttl_seconds

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            self.expired += 1
            self.misses  += 1
            return None

        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())

        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self.evictions += 1
            logger.debug("TTLCache | name=%s evicted=%s", self.name, oldest)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now   = self._clock()
        stale = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in stale:
            del self._entries[key]
        self.expired += len(stale)
        if stale:
            logger.debug("TTLCache sweep | name=%s removed=%d", self.name, len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        """Start the periodic sweep task on the running loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_forever(interval_seconds),
                name=f"ttl-sweeper-{self.name}",
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def stats(self) -> dict:
        return {
            "name":        self.name,
            "size":        len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits":        self.hits,
            "misses":      self.misses,
            "evictions":   self.evictions,
            "expired":     self.expired,
            "hit_rate":    round(self.hit_rate, 3),
        }
