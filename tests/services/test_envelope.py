"""Unit tests for envelope construction."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

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
from bustracker.services.errors import (
    BadRequestError,
    ConfigurationError,
    UpstreamAPIError,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def context():
    return RequestContext(
        endpoint="getpredictions",
        params={"stpid": "456", "rt": None},
        cache_key="getpredictions?stpid=456",
        cache_ttl=timedelta(seconds=15),
    )


class TestEnvelopeModel:
    def test_requires_exactly_one_outcome(self):
        meta = ResponseMeta(endpoint="gettime")
        with pytest.raises(ValidationError):
            Envelope(data=None, error=None, meta=meta)
        with pytest.raises(ValidationError):
            Envelope(
                data={"tm": "x"},
                error=ErrorDetail(code="X", message="x"),
                meta=meta,
            )

    def test_http_status_defaults(self):
        meta = ResponseMeta(endpoint="gettime")
        assert Envelope(data={}, meta=meta).http_status == 200
        failed = Envelope(error=ErrorDetail(code="X", message="x"), meta=meta)
        assert failed.http_status == 502
        assert not failed.ok

    def test_serializes_to_json(self):
        meta = create_base_meta("gettime", {}, cache_ttl=timedelta(seconds=30), now=NOW)
        envelope = Envelope(data={"tm": "x"}, meta=meta)

        dumped = envelope.model_dump(mode="json")

        assert dumped["error"] is None
        assert dumped["meta"]["cache_ttl_ms"] == 30000
        assert dumped["meta"]["cache_expires_at"].startswith("2024-01-01T00:00:30")


class TestSuccessEnvelope:
    def test_wraps_payload_and_sets_status(self):
        meta = ResponseMeta(endpoint="gettime", cache_key="gettime", reason="why")
        result = ClientResult(payload={"tm": "x"}, meta=meta)

        envelope = build_success_envelope(result)

        assert envelope.data == {"tm": "x"}
        assert envelope.error is None
        assert envelope.meta.status == 200
        assert envelope.meta.reason == "why"
        assert result.meta.status is None

    def test_overrides(self):
        result = ClientResult(payload={}, meta=ResponseMeta(endpoint="gettime"))
        envelope = build_success_envelope(result, status=203, served_from_cache=True)
        assert envelope.meta.status == 203
        assert envelope.meta.served_from_cache is True


class TestErrorEnvelope:
    def test_client_error_fields(self, context):
        when = datetime(2023, 12, 31, tzinfo=timezone.utc)
        error = UpstreamAPIError(
            "Invalid API key",
            code="BUS_AUTH_ERROR",
            status=401,
            reason="Bus Tracker API key rejected.",
            source_timestamp=when,
        )

        envelope = build_error_envelope(error, context, now=NOW)

        assert envelope.data is None
        assert envelope.error == ErrorDetail(
            code="BUS_AUTH_ERROR", message="Invalid API key"
        )
        assert envelope.meta.status == 401
        assert envelope.http_status == 401
        assert envelope.meta.reason == "Bus Tracker API key rejected."
        assert envelope.meta.source_timestamp == when
        assert envelope.meta.params_used == {"stpid": "456"}
        assert envelope.meta.cache_key == "getpredictions?stpid=456"
        assert envelope.meta.cache_expires_at == NOW + timedelta(seconds=15)
        assert envelope.meta.served_from_cache is False

    def test_status_by_error_class(self, context):
        config = build_error_envelope(ConfigurationError("no key"), context)
        bad = build_error_envelope(BadRequestError("missing"), context)

        assert config.http_status == 500
        assert config.error.code == "BUS_CONFIG_MISSING"
        assert bad.http_status == 400

    def test_context_status_override(self, context):
        overridden = RequestContext(endpoint="gettime", status=503)
        envelope = build_error_envelope(ConfigurationError("no key"), overridden)
        assert envelope.http_status == 503

    def test_error_provenance_used_when_context_is_sparse(self):
        error = UpstreamAPIError("x").with_context(
            endpoint="getroutes",
            params={"format": "json"},
            cache_key="getroutes?format=json",
            cache_ttl=timedelta(hours=6),
        )

        envelope = build_error_envelope(error, RequestContext(endpoint=""))

        assert envelope.meta.endpoint == "getroutes"
        assert envelope.meta.params_used == {"format": "json"}
        assert envelope.meta.cache_key == "getroutes?format=json"
        assert envelope.meta.cache_ttl_ms == 6 * 60 * 60 * 1000

    def test_unknown_exception_becomes_502(self, context):
        envelope = build_error_envelope(RuntimeError("socket closed"), context)

        assert envelope.http_status == 502
        assert envelope.error.code == "SOCKET_CLOSED"
        assert envelope.error.message == "socket closed"

    def test_exception_without_message(self, context):
        envelope = build_error_envelope(RuntimeError(), context)
        assert envelope.error.code == "BUS_UNKNOWN_ERROR"
        assert envelope.error.message == "Unexpected error contacting Bus Tracker."


def test_create_base_meta_without_ttl():
    meta = create_base_meta("getpredictions", {"stpid": ""}, status=400, now=NOW)

    assert meta.params_used == {}
    assert meta.cache_expires_at is None
    assert meta.cache_ttl_ms is None
    assert meta.status == 400
    assert meta.queried_at == NOW
