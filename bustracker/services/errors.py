"""
Client error taxonomy.

Every failure that reaches a caller is a ClientError carrying a stable code,
the caller-facing HTTP status and whatever provenance was known at the
failure site.
"""

from datetime import datetime, timedelta
from typing import Any


class ClientError(Exception):
    """Base exception for Bus Tracker client failures."""

    default_code = "BUS_CLIENT_ERROR"
    default_status = 502

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
        reason: str | None = None,
        details: str | None = None,
        endpoint: str | None = None,
        params: dict[str, str] | None = None,
        raw_errors: list[dict[str, Any]] | None = None,
        source_timestamp: datetime | None = None,
        cache_key: str | None = None,
        cache_ttl: timedelta | None = None,
        served_from_cache: bool = False,
    ):
        self.message = message
        self.code = code or self.default_code
        self.status = status or self.default_status
        self.reason = reason
        self.details = details
        self.endpoint = endpoint
        self.params = params
        self.raw_errors = list(raw_errors or [])
        self.source_timestamp = source_timestamp
        self.cache_key = cache_key
        self.cache_ttl = cache_ttl
        self.served_from_cache = served_from_cache
        super().__init__(message)

    def with_context(
        self,
        endpoint: str,
        params: dict[str, str],
        cache_key: str,
        cache_ttl: timedelta,
    ) -> "ClientError":
        """Fill in call provenance that the failure site did not know.

        Fields already set are kept, so enriching an error shared by several
        coalesced callers of the same key is idempotent.
        """
        self.endpoint = self.endpoint or endpoint
        if self.params is None:
            self.params = dict(params)
        self.cache_key = self.cache_key or cache_key
        if self.cache_ttl is None:
            self.cache_ttl = cache_ttl
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status})"


class ConfigurationError(ClientError):
    """Local misconfiguration, such as a missing credential."""

    default_code = "BUS_CONFIG_MISSING"
    default_status = 500


class BadRequestError(ClientError):
    """Caller supplied invalid or incomplete parameters."""

    default_code = "BUS_BAD_REQUEST"
    default_status = 400


class UpstreamRequestError(ClientError):
    """Upstream could not be reached within the retry budget."""

    default_code = "UPSTREAM_REQUEST_FAILED"
    default_status = 502


class UpstreamHTTPError(ClientError):
    """Upstream answered with a non-retryable HTTP status."""

    default_code = "BUS_HTTP_ERROR"

    def __init__(self, status_code: int, **kwargs: Any):
        self.upstream_status = status_code
        kwargs.setdefault("status", status_code)
        super().__init__(f"Bus Tracker returned HTTP {status_code}.", **kwargs)


class InvalidResponseError(ClientError):
    """Upstream body was not valid JSON."""

    default_code = "BUS_INVALID_RESPONSE"


class UnexpectedShapeError(ClientError):
    """Upstream JSON did not contain the expected top-level object."""

    default_code = "UNEXPECTED_SHAPE"


class UpstreamAPIError(ClientError):
    """Upstream embedded a hard error in an otherwise successful response."""

    default_code = "BUS_API_ERROR"
