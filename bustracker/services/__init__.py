"""
Service layer - resilient access to the Bus Tracker API.

Provides:
- CacheManager: Process-local TTL cache
- RequestDeduplicator: Single-flight coalescing of concurrent requests
- RetryExecutor: Per-attempt timeout with bounded retry
- Classifier: Soft-empty vs. hard upstream error detection
- BusTrackerClient: Unified client combining all patterns
"""

from bustracker.services.errors import (
    ClientError,
    ConfigurationError,
    BadRequestError,
    UpstreamRequestError,
    UpstreamHTTPError,
    InvalidResponseError,
    UnexpectedShapeError,
    UpstreamAPIError,
)
from bustracker.services.endpoints import ENDPOINTS, EndpointSpec, get_endpoint
from bustracker.services.request import (
    RequestDescriptor,
    compute_cache_key,
    normalize_params,
)
from bustracker.services.cache import CacheManager, CacheEntry
from bustracker.services.deduplicator import RequestDeduplicator
from bustracker.services.retry import RetryExecutor
from bustracker.services.classifier import (
    Classification,
    classify,
    parse_source_timestamp,
)
from bustracker.services.envelope import (
    ClientResult,
    Envelope,
    ErrorDetail,
    RequestContext,
    ResponseMeta,
    build_error_envelope,
    build_success_envelope,
    create_base_meta,
)
from bustracker.services.client import BusTrackerClient

__all__ = [
    # Errors
    "ClientError",
    "ConfigurationError",
    "BadRequestError",
    "UpstreamRequestError",
    "UpstreamHTTPError",
    "InvalidResponseError",
    "UnexpectedShapeError",
    "UpstreamAPIError",
    # Requests
    "ENDPOINTS",
    "EndpointSpec",
    "get_endpoint",
    "RequestDescriptor",
    "compute_cache_key",
    "normalize_params",
    # Cache
    "CacheManager",
    "CacheEntry",
    # Deduplicator
    "RequestDeduplicator",
    # Retry
    "RetryExecutor",
    # Classifier
    "Classification",
    "classify",
    "parse_source_timestamp",
    # Envelope
    "ClientResult",
    "Envelope",
    "ErrorDetail",
    "RequestContext",
    "ResponseMeta",
    "build_error_envelope",
    "build_success_envelope",
    "create_base_meta",
    # Client
    "BusTrackerClient",
]
