"""
Request descriptors - immutable description of one logical upstream call.

A descriptor fixes the endpoint, canonical parameter set, cache key, TTL,
timeout and retry budget up front, so the cache, the in-flight registry and
the retry engine all agree on what is being fetched.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Any
from urllib.parse import quote

from bustracker.services.endpoints import get_endpoint
from bustracker.services.errors import BadRequestError

DEFAULT_TIMEOUT = 7.0
DEFAULT_MAX_RETRIES = 2

FEED_PARAM = "rtpidatafeed"
FORMAT_PARAM = "format"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return ",".join(str(item) for item in items if not _is_blank(item))
    return str(value)


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    """Drop empty values, stringify the rest and sort by key."""
    if not params:
        return {}

    normalized: dict[str, str] = {}
    for key in sorted(params):
        value = params[key]
        if _is_blank(value):
            continue
        text = _stringify(value)
        if text == "":
            continue
        normalized[key] = text
    return normalized


def serialize_params(params: Mapping[str, str]) -> str:
    """Serialize parameters as a deterministic query string."""
    return "&".join(f"{key}={quote(params[key], safe='')}" for key in sorted(params))


def compute_cache_key(
    endpoint: str,
    params: Mapping[str, str],
    override: str | None = None,
) -> str:
    """Derive the cache key for an endpoint and canonical parameters."""
    if override:
        return override
    serialized = serialize_params(params)
    return f"{endpoint}?{serialized}" if serialized else endpoint


@dataclass(frozen=True)
class RequestDescriptor:
    """One logical upstream call."""

    endpoint: str
    params: Mapping[str, str] = field(hash=False)
    cache_key: str
    cache_ttl: timedelta = timedelta(0)
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    required_params: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # cache_key is derived from params, so they are stored read-only
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def cacheable(self) -> bool:
        return self.cache_ttl > timedelta(0)

    @classmethod
    def build(
        cls,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        *,
        required_params: Iterable[str] | None = None,
        cache_key: str | None = None,
        cache_ttl: timedelta | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        feed: str | None = None,
        output_format: str | None = "json",
    ) -> "RequestDescriptor":
        """
        Build a descriptor, validating required parameters.

        Args:
            endpoint: Upstream endpoint name (e.g. "getpredictions")
            params: Caller parameters; empty values are dropped
            required_params: Keys that must be present (catalog default if None)
            cache_key: Explicit cache key overriding the derived one
            cache_ttl: Cache lifetime, zero disables caching (catalog default if None)
            timeout: Seconds allowed per attempt
            max_retries: Retries after the first attempt
            feed: Feed identifier injected unless the caller supplied one
            output_format: Output format flag injected unless supplied

        Raises:
            BadRequestError: If a required parameter is missing
        """
        if not endpoint:
            raise ValueError("endpoint must be a non-empty string")

        spec = get_endpoint(endpoint)
        normalized = normalize_params(params)

        if required_params is None:
            required = spec.required_params if spec else frozenset()
        else:
            required = frozenset(required_params)

        for key in sorted(required):
            if key not in normalized:
                raise BadRequestError(
                    f"Missing required parameter: {key}",
                    endpoint=endpoint,
                    params=dict(normalized),
                )

        if feed and FEED_PARAM not in normalized:
            normalized[FEED_PARAM] = feed
        if output_format and FORMAT_PARAM not in normalized:
            normalized[FORMAT_PARAM] = output_format
        normalized = dict(sorted(normalized.items()))

        if cache_ttl is None:
            cache_ttl = spec.ttl_for(normalized) if spec else timedelta(0)
        if cache_ttl < timedelta(0):
            raise ValueError("cache_ttl must not be negative")
        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must not be negative")

        return cls(
            endpoint=endpoint,
            params=normalized,
            cache_key=compute_cache_key(endpoint, normalized, cache_key),
            cache_ttl=cache_ttl,
            timeout=timeout if timeout is not None else DEFAULT_TIMEOUT,
            max_retries=max_retries if max_retries is not None else DEFAULT_MAX_RETRIES,
            required_params=required,
        )
