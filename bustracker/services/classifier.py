"""
Classification of Bus Tracker response bodies.

The upstream reports problems inside a 200 response as an ``error`` array of
``{"msg": ..., ...}`` objects. Some of those are ordinary empty results
("No arrival times") and must reach callers as successes; the rest are hard
failures with a status inferred from the message.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from loguru import logger

from bustracker.services.errors import UnexpectedShapeError, UpstreamAPIError

ENVELOPE_KEY = "bustime-response"
DEFAULT_ERROR_CODE = "BUS_API_ERROR"
DEFAULT_ERROR_MESSAGE = "Bus Tracker returned an error."


@dataclass(frozen=True)
class ErrorMapping:
    pattern: re.Pattern[str]
    reason: str
    code: str | None = None
    status: int | None = None


SOFT_ERROR_PATTERNS: tuple[ErrorMapping, ...] = (
    ErrorMapping(re.compile(r"no data found", re.I), "No data found for parameters."),
    ErrorMapping(
        re.compile(r"no service scheduled", re.I), "No service scheduled at this time."
    ),
    ErrorMapping(re.compile(r"no arrival times", re.I), "No arrival times available."),
    ErrorMapping(
        re.compile(r"no predictions", re.I), "No predictions are currently available."
    ),
    ErrorMapping(re.compile(r"no buses were found", re.I), "No active vehicles found."),
)

HARD_ERROR_MAPPINGS: tuple[ErrorMapping, ...] = (
    ErrorMapping(
        re.compile(r"invalid param", re.I),
        "Bus Tracker rejected one or more parameters.",
        code="BUS_INVALID_PARAMETER",
        status=400,
    ),
    ErrorMapping(
        re.compile(r"limit exceeded|daily request limit", re.I),
        "Bus Tracker rate limit exceeded.",
        code="BUS_RATE_LIMIT",
        status=429,
    ),
    ErrorMapping(
        re.compile(r"api key", re.I),
        "Bus Tracker API key rejected.",
        code="BUS_AUTH_ERROR",
        status=401,
    ),
)


@dataclass(frozen=True)
class Classification:
    """A response body judged to be a success."""

    payload: dict[str, Any]
    reason: str | None = None

    @property
    def is_soft_empty(self) -> bool:
        return self.reason is not None


def derive_code_from_message(message: str) -> str:
    """Turn an upstream message into an UPPER_SNAKE error code."""
    slug = re.sub(r"[^A-Z0-9]+", "_", message.upper()).strip("_")[:60]
    return slug.strip("_") or DEFAULT_ERROR_CODE


def _message_of(raw: Any) -> str | None:
    if isinstance(raw, dict):
        msg = raw.get("msg")
        if isinstance(msg, str) and msg:
            return msg
    return None


def _match(
    raw_errors: list[Any],
    table: tuple[ErrorMapping, ...],
) -> tuple[ErrorMapping, str] | None:
    for raw in raw_errors:
        msg = _message_of(raw)
        if msg is None:
            continue
        for mapping in table:
            if mapping.pattern.search(msg):
                return mapping, msg
    return None


def classify_soft_error(raw_errors: list[Any]) -> str | None:
    """Return the explanation if any error is a recognised empty result."""
    matched = _match(raw_errors, SOFT_ERROR_PATTERNS)
    return matched[0].reason if matched else None


def extract_envelope(body: Any, key: str = ENVELOPE_KEY) -> dict[str, Any]:
    """Return the application object under the top-level key."""
    envelope = body.get(key) if isinstance(body, dict) else None
    if not isinstance(envelope, dict):
        raise UnexpectedShapeError("Unexpected Bus Tracker response shape.")
    return envelope


def build_api_error(
    raw_errors: list[Any],
    source_timestamp: datetime | None = None,
) -> UpstreamAPIError:
    """Build the hard failure for an unrecognised upstream error list."""
    matched = _match(raw_errors, HARD_ERROR_MAPPINGS)
    if matched:
        mapping, msg = matched
        return UpstreamAPIError(
            msg,
            code=mapping.code,
            status=mapping.status,
            reason=mapping.reason,
            raw_errors=raw_errors,
            source_timestamp=source_timestamp,
        )

    first = raw_errors[0] if raw_errors else None
    msg = _message_of(first)
    code = first.get("code") if isinstance(first, dict) else None
    if not code:
        code = derive_code_from_message(msg) if msg else DEFAULT_ERROR_CODE
    return UpstreamAPIError(
        msg or DEFAULT_ERROR_MESSAGE,
        code=str(code),
        raw_errors=raw_errors,
        source_timestamp=source_timestamp,
    )


def classify(
    envelope: dict[str, Any],
    source_timestamp: datetime | None = None,
) -> Classification:
    """
    Decide whether an upstream envelope is a payload, a soft empty or a failure.

    Args:
        envelope: Object found under the top-level response key
        source_timestamp: Parsed upstream generation time, for error provenance

    Returns:
        Classification with the payload (``error`` stripped for soft empties)

    Raises:
        UpstreamAPIError: If the envelope carries an unrecognised error
    """
    raw_errors = envelope.get("error")
    if not raw_errors:
        return Classification(payload=dict(envelope))

    if not isinstance(raw_errors, list):
        raw_errors = [raw_errors]

    reason = classify_soft_error(raw_errors)
    if reason is None:
        raise build_api_error(raw_errors, source_timestamp)

    logger.info(f"Upstream reported empty result: {reason}")
    payload = {k: v for k, v in envelope.items() if k != "error"}
    return Classification(payload=payload, reason=reason)


def parse_source_timestamp(
    value: Any,
    tz: str | ZoneInfo = "America/Chicago",
) -> datetime | None:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Accepts the native "YYYYMMDD HH:MM[:SS]" form, which is local time in
    the feed's zone, and ISO 8601. Returns None when unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    zone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
    text = value.strip()

    try:
        if "T" in text:
            parsed = date_parser.isoparse(text)
        else:
            date_part, _, time_part = text.partition(" ")
            fmt = "%Y%m%d %H:%M:%S" if time_part.count(":") == 2 else "%Y%m%d %H:%M"
            parsed = datetime.strptime(f"{date_part} {time_part}", fmt)
    except ValueError:
        logger.debug(f"Unparseable upstream timestamp: {value!r}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(timezone.utc)
