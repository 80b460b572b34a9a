"""
CacheManager - Process-local TTL cache for upstream responses.

Features:
- Entries expire after a per-entry TTL, checked lazily on lookup
- Entries are replaced, never mutated, so concurrent readers share one value
- Bulk invalidation by key predicate or prefix
- Async-safe via a single lock
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    payload: T
    meta: Any
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now >= self.expires_at


class CacheManager:
    """
    Async-compatible TTL cache keyed by request cache key.

    Usage:
        cache = CacheManager()

        entry = await cache.get("gettime")
        if entry:
            return entry.payload

        payload, meta = await fetch()
        await cache.set("gettime", payload, meta, ttl=timedelta(seconds=30))
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    def now(self) -> datetime:
        return self._clock()

    async def get(self, key: str) -> CacheEntry[Any] | None:
        """
        Get entry from cache.

        Returns the entry if present and unexpired, None otherwise.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self.now()):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expired += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry

    async def peek(self, key: str) -> CacheEntry[Any] | None:
        """Get an unexpired entry without touching stats or evicting."""
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None or entry.is_expired(self.now()):
                return None
            return entry

    async def set(
        self,
        key: str,
        payload: Any,
        meta: Any,
        ttl: timedelta,
    ) -> CacheEntry[Any] | None:
        """
        Store a value, replacing any existing entry for the key.

        A non-positive TTL means "never cache" and leaves the store untouched.
        """
        if ttl <= timedelta(0):
            return None

        entry = CacheEntry(payload=payload, meta=meta, expires_at=self.now() + ttl)
        async with self._lock:
            self._memory[key] = entry
            self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")
        return entry

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def invalidate(self, predicate: Callable[[str], bool] | None = None) -> int:
        """
        Invalidate all keys matching a predicate.

        Args:
            predicate: Called with each key; all entries are removed if omitted

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            keys_to_delete = [
                key for key in self._memory if predicate is None or predicate(key)
            ]
            for key in keys_to_delete:
                del self._memory[key]

            if keys_to_delete:
                self._log(f"INVALIDATE: {len(keys_to_delete)} entries")

            return len(keys_to_delete)

    async def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate all keys starting with prefix."""
        return await self.invalidate(lambda key: key.startswith(prefix))

    async def clear(self) -> None:
        """Clear all cache entries."""
        count = await self.invalidate()
        self._log(f"CLEAR: {count} entries removed")

    def __len__(self) -> int:
        return len(self._memory)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
