"""
Caller-facing response envelope.

Every outcome, whether a fresh fetch, a cache hit, a coalesced join or a
failure, leaves the client as ``{data, error, meta}`` with exactly one of
``data``/``error`` set and ``meta`` always populated.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

from bustracker.services.classifier import derive_code_from_message
from bustracker.services.errors import ClientError
from bustracker.services.request import normalize_params

T = TypeVar("T")

UNKNOWN_ERROR_CODE = "BUS_UNKNOWN_ERROR"
UNKNOWN_ERROR_MESSAGE = "Unexpected error contacting Bus Tracker."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ttl_ms(ttl: timedelta | None) -> int | None:
    if ttl is None:
        return None
    return int(ttl.total_seconds() * 1000)


class ResponseMeta(BaseModel):
    """Provenance attached to every response."""

    endpoint: str
    params_used: dict[str, str] = Field(default_factory=dict)
    cache_key: str | None = None
    cache_ttl_ms: int | None = None
    cache_expires_at: datetime | None = None
    served_from_cache: bool = False
    source_timestamp: datetime | None = None
    reason: str | None = None
    status: int | None = None
    queried_at: datetime = Field(default_factory=_utcnow)


class ErrorDetail(BaseModel):
    """Machine-readable failure description."""

    code: str
    message: str
    details: str | None = None


class Envelope(BaseModel, Generic[T]):
    """Uniform ``{data, error, meta}`` response."""

    data: T | None = None
    error: ErrorDetail | None = None
    meta: ResponseMeta

    @model_validator(mode="after")
    def check_exactly_one_outcome(self) -> "Envelope[T]":
        if (self.data is None) == (self.error is None):
            raise ValueError("exactly one of data and error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def http_status(self) -> int:
        if self.meta.status is not None:
            return self.meta.status
        return 200 if self.ok else 502


@dataclass(frozen=True)
class ClientResult(Generic[T]):
    """Successful client call: upstream payload plus provenance."""

    payload: T
    meta: ResponseMeta


@dataclass(frozen=True)
class RequestContext:
    """What the caller knows about a call when it has to report a failure."""

    endpoint: str
    params: dict[str, Any] = field(default_factory=dict)
    cache_key: str | None = None
    cache_ttl: timedelta | None = None
    served_from_cache: bool | None = None
    source_timestamp: datetime | None = None
    reason: str | None = None
    status: int | None = None


def create_base_meta(
    endpoint: str,
    params: dict[str, Any] | None = None,
    cache_key: str | None = None,
    cache_ttl: timedelta | None = None,
    served_from_cache: bool = False,
    source_timestamp: datetime | None = None,
    reason: str | None = None,
    status: int | None = None,
    now: datetime | None = None,
) -> ResponseMeta:
    """Build metadata for a response produced without (or before) a client call."""
    now = now or _utcnow()
    expires_at = now + cache_ttl if cache_ttl and cache_ttl > timedelta(0) else None
    return ResponseMeta(
        endpoint=endpoint,
        params_used=normalize_params(params),
        cache_key=cache_key,
        cache_ttl_ms=_ttl_ms(cache_ttl),
        cache_expires_at=expires_at,
        served_from_cache=served_from_cache,
        source_timestamp=source_timestamp,
        reason=reason,
        status=status,
        queried_at=now,
    )


def build_success_envelope(
    result: ClientResult[T],
    status: int = 200,
    **overrides: Any,
) -> Envelope[T]:
    """Wrap a successful result, optionally overriding meta fields."""
    update = {"status": status, "queried_at": _utcnow(), **overrides}
    return Envelope(
        data=result.payload,
        error=None,
        meta=result.meta.model_copy(update=update),
    )


def build_error_envelope(
    error: BaseException,
    context: RequestContext,
    now: datetime | None = None,
) -> Envelope[Any]:
    """
    Map any exception raised by a call into an error envelope.

    ClientError fields take precedence over context defaults except where
    the context sets them explicitly; other exceptions become a 502 with a
    code derived from their message.
    """
    if isinstance(error, ClientError):
        detail = ErrorDetail(
            code=error.code, message=error.message, details=error.details
        )
        endpoint = context.endpoint or error.endpoint or ""
        params = context.params if context.params else (error.params or {})
        cache_key = context.cache_key or error.cache_key
        cache_ttl = (
            context.cache_ttl if context.cache_ttl is not None else error.cache_ttl
        )
        status = context.status or error.status
        reason = context.reason or error.reason
        source_timestamp = context.source_timestamp or error.source_timestamp
        served_from_cache = (
            context.served_from_cache
            if context.served_from_cache is not None
            else error.served_from_cache
        )
    else:
        message = str(error)
        detail = ErrorDetail(
            code=derive_code_from_message(message) if message else UNKNOWN_ERROR_CODE,
            message=message or UNKNOWN_ERROR_MESSAGE,
        )
        endpoint = context.endpoint
        params = context.params
        cache_key = context.cache_key
        cache_ttl = context.cache_ttl
        status = context.status or 502
        reason = context.reason
        source_timestamp = context.source_timestamp
        served_from_cache = bool(context.served_from_cache)

    meta = create_base_meta(
        endpoint=endpoint,
        params=params,
        cache_key=cache_key,
        cache_ttl=cache_ttl,
        served_from_cache=served_from_cache,
        source_timestamp=source_timestamp,
        reason=reason,
        status=status,
        now=now,
    )
    return Envelope(data=None, error=detail, meta=meta)
