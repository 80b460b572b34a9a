"""
BusTrackerClient - Resilient async client for the Bus Tracker API.

Combines:
- CacheManager for per-endpoint TTL caching
- RequestDeduplicator for single-flight coalescing by cache key
- RetryExecutor for per-attempt timeouts and bounded retry
- The classifier for soft-empty vs. hard upstream errors
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import httpx
from loguru import logger

from bustracker.services.cache import CacheManager, utcnow
from bustracker.services.classifier import (
    classify,
    extract_envelope,
    parse_source_timestamp,
)
from bustracker.services.deduplicator import RequestDeduplicator
from bustracker.services.envelope import (
    ClientResult,
    Envelope,
    RequestContext,
    ResponseMeta,
    build_error_envelope,
    build_success_envelope,
)
from bustracker.services.errors import (
    ClientError,
    ConfigurationError,
    InvalidResponseError,
    UpstreamRequestError,
)
from bustracker.services.request import RequestDescriptor
from bustracker.services.retry import RetryExecutor
from bustracker.settings import Settings, global_settings

CREDENTIAL_PARAM = "key"
WIRE_FORMAT = "json"


class BusTrackerClient:
    """
    Bus Tracker client with caching, coalescing and retry.

    One instance owns the process-wide cache and in-flight registry; build it
    once and pass it to every caller.

    Usage:
        async with BusTrackerClient() as client:
            envelope = await client.get("getpredictions", {"stpid": "456"})

            # Or, when the caller wants exceptions
            descriptor = client.request("gettime")
            result = await client.call(descriptor)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings or global_settings
        self._debug = self._settings.debug
        self._source_zone = ZoneInfo(self._settings.source_timezone)

        self._cache = CacheManager(clock=clock, debug=self._debug)
        self._deduplicator = RequestDeduplicator(debug=self._debug)

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._executor: RetryExecutor | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    async def _get_executor(self) -> RetryExecutor:
        """Get or create the HTTP client and retry executor."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.timeout),
                follow_redirects=True,
            )
        if self._executor is None:
            self._executor = RetryExecutor(
                self._http_client, backoff=self._settings.retry_backoff
            )
        return self._executor

    def ensure_configured(self) -> None:
        """Raise if the static credential is missing."""
        if not self._settings.api_key:
            raise ConfigurationError("Bus Tracker API key is not configured.")

    def request(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        required_params: Iterable[str] | None = None,
        cache_key: str | None = None,
        cache_ttl: timedelta | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> RequestDescriptor:
        """
        Build a request descriptor with this client's defaults.

        Raises:
            ConfigurationError: If no credential is configured
            BadRequestError: If a required parameter is missing
        """
        self.ensure_configured()
        return RequestDescriptor.build(
            endpoint,
            params,
            required_params=required_params,
            cache_key=cache_key,
            cache_ttl=cache_ttl,
            timeout=timeout if timeout is not None else self._settings.timeout,
            max_retries=(
                max_retries if max_retries is not None else self._settings.max_retries
            ),
            feed=self._settings.feed or None,
            output_format=self._settings.output_format or None,
        )

    async def call(self, descriptor: RequestDescriptor) -> ClientResult[dict[str, Any]]:
        """
        Execute a request: cache, then coalesce, then fetch.

        Returns:
            ClientResult with the upstream payload and provenance

        Raises:
            ClientError: For every failure class, enriched with call context
        """
        try:
            self.ensure_configured()

            cached = await self._from_cache(descriptor)
            if cached is not None:
                return cached

            return await self._deduplicator.dedupe(
                descriptor.cache_key,
                lambda: self._fetch_and_store(descriptor),
            )
        except ClientError as e:
            raise e.with_context(
                endpoint=descriptor.endpoint,
                params=descriptor.params,
                cache_key=descriptor.cache_key,
                cache_ttl=descriptor.cache_ttl,
            )

    async def fetch(self, descriptor: RequestDescriptor) -> Envelope[dict[str, Any]]:
        """Execute a request and return an envelope instead of raising."""
        try:
            result = await self.call(descriptor)
        except ClientError as e:
            return build_error_envelope(e, self._context_for(descriptor))
        except Exception as e:
            logger.error(
                f"Unexpected failure calling Bus Tracker {descriptor.endpoint}: "
                f"{type(e).__name__}: {e}"
            )
            return build_error_envelope(e, self._context_for(descriptor))
        return build_success_envelope(result)

    async def get(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        **options: Any,
    ) -> Envelope[dict[str, Any]]:
        """Build, execute and wrap a request in one step."""
        try:
            descriptor = self.request(endpoint, params, **options)
        except ClientError as e:
            return build_error_envelope(
                e,
                RequestContext(
                    endpoint=endpoint,
                    params=dict(params or {}),
                    cache_key=options.get("cache_key"),
                    cache_ttl=options.get("cache_ttl"),
                ),
            )
        return await self.fetch(descriptor)

    async def _from_cache(
        self, descriptor: RequestDescriptor, recheck: bool = False
    ) -> ClientResult[dict[str, Any]] | None:
        if not descriptor.cacheable:
            return None

        if recheck:
            entry = await self._cache.peek(descriptor.cache_key)
        else:
            entry = await self._cache.get(descriptor.cache_key)
        if entry is None:
            return None

        meta: ResponseMeta = entry.meta
        return ClientResult(
            payload=entry.payload,
            meta=meta.model_copy(update={"served_from_cache": True}),
        )

    async def _fetch_and_store(
        self, descriptor: RequestDescriptor
    ) -> ClientResult[dict[str, Any]]:
        """Leader path: fetch from upstream and populate the cache."""
        # The key may have been filled between the caller's miss and launch
        cached = await self._from_cache(descriptor, recheck=True)
        if cached is not None:
            return cached

        try:
            result = await self._fetch_upstream(descriptor)
        except ClientError as e:
            logger.error(
                f"Bus Tracker {descriptor.endpoint} failed: "
                f"{e.code} ({e.status}) {e.message}"
            )
            raise

        if descriptor.cacheable:
            await self._cache.set(
                descriptor.cache_key, result.payload, result.meta, descriptor.cache_ttl
            )
        return result

    async def _fetch_upstream(
        self, descriptor: RequestDescriptor
    ) -> ClientResult[dict[str, Any]]:
        executor = await self._get_executor()
        url = f"{self._settings.base_url.rstrip('/')}/{descriptor.endpoint}"
        query = {
            **descriptor.params,
            CREDENTIAL_PARAM: self._settings.api_key,
            "format": WIRE_FORMAT,
        }

        try:
            response = await executor.execute(
                url, query, descriptor.timeout, descriptor.max_retries
            )
        except httpx.HTTPError as e:
            raise UpstreamRequestError(
                "Failed to reach the Bus Tracker service.", details=str(e)
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise InvalidResponseError("Bus Tracker returned invalid JSON.") from e

        envelope = extract_envelope(body)
        source_timestamp = parse_source_timestamp(
            envelope.get("tmst"), self._source_zone
        )
        classification = classify(envelope, source_timestamp)

        now = self._cache.now()
        meta = ResponseMeta(
            endpoint=descriptor.endpoint,
            params_used=dict(descriptor.params),
            cache_key=descriptor.cache_key,
            cache_ttl_ms=int(descriptor.cache_ttl.total_seconds() * 1000),
            cache_expires_at=(
                now + descriptor.cache_ttl if descriptor.cacheable else None
            ),
            served_from_cache=False,
            source_timestamp=source_timestamp,
            reason=classification.reason,
            status=200,
            queried_at=now,
        )
        return ClientResult(payload=classification.payload, meta=meta)

    def _context_for(self, descriptor: RequestDescriptor) -> RequestContext:
        return RequestContext(
            endpoint=descriptor.endpoint,
            params=dict(descriptor.params),
            cache_key=descriptor.cache_key,
            cache_ttl=descriptor.cache_ttl,
        )

    async def invalidate(self, predicate: Callable[[str], bool] | None = None) -> int:
        """Drop cached entries whose key matches predicate (all if omitted)."""
        count = await self._cache.invalidate(predicate)
        logger.info(f"Invalidated {count} cached Bus Tracker responses")
        return count

    async def invalidate_prefix(self, prefix: str) -> int:
        """Drop cached entries whose key starts with prefix."""
        return await self.invalidate(lambda key: key.startswith(prefix))

    def get_health_status(self) -> dict[str, Any]:
        """Get cache and coalescing statistics."""
        return {
            "configured": bool(self._settings.api_key),
            "cache": self._cache.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
        }

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        await self._deduplicator.cancel_all()

        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        self._executor = None
        logger.debug("BusTrackerClient closed")

    async def __aenter__(self) -> "BusTrackerClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
