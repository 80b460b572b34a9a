"""
RequestDeduplicator - Single-flight registry for upstream requests.

When multiple callers request the same cache key simultaneously,
only one actual request is made and every caller observes its outcome.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Coalesces concurrent async requests by key.

    The first caller for a key launches the request as a task; callers that
    arrive while it runs await the same task. The task deregisters itself in
    a finally block before settling, so a failed request never blocks later
    ones.

    Usage:
        dedup = RequestDeduplicator()

        async def fetch(descriptor):
            return await dedup.dedupe(
                key=descriptor.cache_key,
                request_fn=lambda: engine.execute(descriptor),
            )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Execute request with deduplication.

        If a request with the same key is already in flight,
        wait for and return its result instead of making a new request.

        Args:
            key: Cache key identifying the upstream resource
            request_fn: Async function to execute if no request is in flight

        Returns:
            Result from request_fn (either fresh or from the in-flight request)
        """
        async with self._lock:
            task = self._in_flight.get(key)
            if task is not None:
                self._stats.deduplicated += 1
                self._log(f"JOIN: {key[:50]}")
            else:
                self._stats.total += 1
                self._log(f"NEW: {key[:50]}")
                task = asyncio.create_task(self._execute_and_cleanup(key, request_fn))
                self._in_flight[key] = task

        # Cancelling one waiter must not cancel the fetch others depend on
        return await asyncio.shield(task)

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute request and deregister it when settled."""
        try:
            return await request_fn()
        finally:
            async with self._lock:
                if self._in_flight.get(key) is asyncio.current_task():
                    del self._in_flight[key]
                self._log(f"DONE: {key[:50]}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def cancel_all(self) -> int:
        """Cancel all in-flight requests. Only used on shutdown."""
        async with self._lock:
            tasks = list(self._in_flight.values())
            self._in_flight.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self._log(f"CANCEL_ALL: {len(tasks)} requests cancelled")
        return len(tasks)

    def get_in_flight_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Upstream requests launched
        self.deduplicated: int = 0  # Callers that joined an in-flight request
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
