"""Unit tests for upstream body classification."""

from datetime import datetime, timezone

import pytest

from bustracker.services.classifier import (
    classify,
    classify_soft_error,
    derive_code_from_message,
    extract_envelope,
    parse_source_timestamp,
)
from bustracker.services.errors import UnexpectedShapeError, UpstreamAPIError


class TestExtractEnvelope:
    def test_returns_object_under_key(self):
        assert extract_envelope({"bustime-response": {"tm": "x"}}) == {"tm": "x"}

    @pytest.mark.parametrize(
        "body",
        [None, [], "text", {}, {"bustime-response": []}, {"bustime-response": "x"}],
    )
    def test_rejects_unexpected_shapes(self, body):
        with pytest.raises(UnexpectedShapeError) as exc_info:
            extract_envelope(body)
        assert exc_info.value.code == "UNEXPECTED_SHAPE"
        assert exc_info.value.status == 502


class TestClassify:
    def test_genuine_payload_passes_through(self):
        envelope = {"routes": [{"rt": "22"}]}

        result = classify(envelope)

        assert result.payload == envelope
        assert result.reason is None
        assert not result.is_soft_empty

    @pytest.mark.parametrize(
        ("message", "reason"),
        [
            ("No data found for parameter", "No data found for parameters."),
            ("No service scheduled", "No service scheduled at this time."),
            ("No arrival times", "No arrival times available."),
            ("No Predictions Available", "No predictions are currently available."),
            ("No buses were found", "No active vehicles found."),
        ],
    )
    def test_soft_errors_become_success(self, message, reason):
        envelope = {
            "tmst": "20240101 12:00",
            "error": [{"stpid": "456", "msg": message}],
        }

        result = classify(envelope)

        assert result.reason == reason
        assert result.is_soft_empty
        assert "error" not in result.payload
        assert result.payload["tmst"] == "20240101 12:00"

    def test_soft_error_anywhere_in_list(self):
        errors = [{"msg": ""}, {"code": "X"}, {"msg": "no arrival times"}]
        assert classify_soft_error(errors) == "No arrival times available."

    @pytest.mark.parametrize(
        ("message", "code", "status"),
        [
            ("Invalid parameter provided", "BUS_INVALID_PARAMETER", 400),
            ("Transaction limit exceeded", "BUS_RATE_LIMIT", 429),
            ("Daily request limit reached", "BUS_RATE_LIMIT", 429),
            ("Invalid API key", "BUS_AUTH_ERROR", 401),
        ],
    )
    def test_hard_error_mappings(self, message, code, status):
        raw = [{"msg": message}]

        with pytest.raises(UpstreamAPIError) as exc_info:
            classify({"error": raw})

        error = exc_info.value
        assert error.code == code
        assert error.status == status
        assert error.message == message
        assert error.raw_errors == raw

    def test_unmapped_error_uses_upstream_code(self):
        with pytest.raises(UpstreamAPIError) as exc_info:
            classify({"error": [{"code": "E17", "msg": "Something broke"}]})

        assert exc_info.value.code == "E17"
        assert exc_info.value.status == 502

    def test_unmapped_error_derives_code_from_message(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)

        with pytest.raises(UpstreamAPIError) as exc_info:
            classify({"error": [{"msg": "Route 99 is not valid!"}]}, when)

        assert exc_info.value.code == "ROUTE_99_IS_NOT_VALID"
        assert exc_info.value.source_timestamp == when

    def test_error_without_message_gets_default(self):
        with pytest.raises(UpstreamAPIError) as exc_info:
            classify({"error": [{}]})

        assert exc_info.value.code == "BUS_API_ERROR"
        assert exc_info.value.message == "Bus Tracker returned an error."

    def test_single_error_object_is_accepted(self):
        result = classify({"error": {"msg": "No data found"}})
        assert result.reason == "No data found for parameters."

    def test_empty_error_list_is_genuine(self):
        result = classify({"error": [], "vehicle": []})
        assert result.reason is None


class TestDeriveCode:
    def test_slug(self):
        assert derive_code_from_message("no such stop: 1234") == "NO_SUCH_STOP_1234"

    def test_truncated(self):
        assert len(derive_code_from_message("x" * 100)) == 60

    def test_fallback(self):
        assert derive_code_from_message("!!!") == "BUS_API_ERROR"


class TestParseSourceTimestamp:
    def test_native_format_is_local_time(self):
        parsed = parse_source_timestamp("20240101 18:00:00")
        assert parsed == datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)

    def test_native_format_without_seconds(self):
        parsed = parse_source_timestamp("20240701 12:30")
        assert parsed == datetime(2024, 7, 1, 17, 30, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        parsed = parse_source_timestamp("2024-01-01T00:00:00.000Z")
        assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_custom_zone(self):
        parsed = parse_source_timestamp("20240101 00:00", tz="UTC")
        assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "garbage", "2024", 12345])
    def test_unparseable_returns_none(self, value):
        assert parse_source_timestamp(value) is None
