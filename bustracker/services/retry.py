"""
RetryExecutor - Per-attempt timeout and bounded retry for upstream GETs.

Transient failures (attempt timeout, transport errors, HTTP 5xx) are retried
up to max_retries times. A 4xx response is never retried: caller and auth
errors do not go away by asking again.
"""

import asyncio
import random

import httpx
from loguru import logger

from bustracker.services.errors import UpstreamHTTPError, UpstreamRequestError


class TransientUpstreamError(Exception):
    """An attempt failed in a way worth retrying."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def status_for_upstream(status_code: int) -> int:
    """Map a non-retryable upstream status to the caller-facing one."""
    if status_code in (401, 403):
        return 401
    if status_code in (400, 429):
        return status_code
    return 502


def backoff_delay(attempt: int, base: float) -> float:
    """Exponential delay with full jitter, zero when backoff is disabled."""
    if base <= 0:
        return 0.0
    return random.uniform(0, base * (2 ** (attempt - 1)))


class RetryExecutor:
    """
    Performs upstream GET requests with timeout and bounded retry.

    Usage:
        executor = RetryExecutor(http_client)
        response = await executor.execute(
            url="https://example.com/bustime/api/v3/gettime",
            params={"key": "...", "format": "json"},
            timeout=7.0,
            max_retries=2,
        )
    """

    def __init__(self, http_client: httpx.AsyncClient, backoff: float = 0.0):
        self._http_client = http_client
        self._backoff = backoff

    async def execute(
        self,
        url: str,
        params: dict[str, str] | None,
        timeout: float,
        max_retries: int,
    ) -> httpx.Response:
        """
        Perform the request, retrying transient failures.

        Args:
            url: Full endpoint URL without query string
            params: Query parameters, credential included
            timeout: Wall-clock seconds allowed per attempt
            max_retries: Retries after the first attempt

        Returns:
            The first successful (2xx) response

        Raises:
            UpstreamHTTPError: Upstream answered 4xx (single attempt)
            UpstreamRequestError: All attempts failed transiently
        """
        attempts = max_retries + 1
        last_error: TransientUpstreamError | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(url, params, timeout)
            except TransientUpstreamError as e:
                last_error = e
                if attempt < attempts:
                    logger.warning(
                        f"Attempt {attempt}/{attempts} to {url} failed: {e}, retrying"
                    )
                    delay = backoff_delay(attempt, self._backoff)
                    if delay:
                        await asyncio.sleep(delay)

        raise UpstreamRequestError(
            "Failed to reach the Bus Tracker service.",
            details=str(last_error),
        ) from last_error

    async def _attempt(
        self,
        url: str,
        params: dict[str, str] | None,
        timeout: float,
    ) -> httpx.Response:
        """Run a single attempt, classifying its failure mode."""
        logger.debug(f"GET {url} (timeout {timeout}s)")
        try:
            response = await asyncio.wait_for(
                self._http_client.get(url, params=params, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientUpstreamError(f"timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise TransientUpstreamError(
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            ) from e

        if response.status_code >= 500:
            raise TransientUpstreamError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )

        if response.status_code >= 400 or not response.is_success:
            raise UpstreamHTTPError(
                response.status_code,
                status=status_for_upstream(response.status_code),
                reason=_reason_for(response),
                details=response.text[:200] if response.text else None,
            )

        return response


def _reason_for(response: httpx.Response) -> str:
    if response.status_code in (401, 403):
        return "Bus Tracker rejected the request credentials."
    if response.status_code == 429:
        return "Bus Tracker rate limit exceeded."
    return f"Bus Tracker returned HTTP {response.status_code}."
