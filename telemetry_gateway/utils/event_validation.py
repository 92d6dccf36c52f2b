"""Raw event → :class:`CanonicalEvent` conversion.

The same rules apply whichever wire format produced the descriptor:

* ``type`` and ``match_id`` are required and must be non-empty after trimming.
* ``timestamp`` falls back to the gateway's receipt time when missing or
  unparsable or out of range (negative, or past year 9999); it never rejects an
  event on its own.  Values below ``1e11`` are
  taken as seconds, anything else as milliseconds, and the result is stored as
  integer epoch milliseconds.
* ``server_id`` in the body is dropped without comment and replaced by the
  authenticated identity.
* Everything else lands in ``fields``.  Legacy values arrive as strings and stay
  strings; JSON values keep their native scalar type.  Nested objects, arrays
  and ``null`` are rejected.
"""

from __future__ import annotations

import math
from typing import Any, FrozenSet, Mapping, Optional

from telemetry_gateway.models import CanonicalEvent, FieldValue
from telemetry_gateway.models.events import FIELD_VALUE_TYPES
from telemetry_gateway.utils.errors import EventValidationError

__all__ = ["canonicalize", "resolve_timestamp", "RESERVED_KEYS", "MAX_TIMESTAMP_MS"]

RESERVED_KEYS = frozenset({"type", "match_id", "timestamp", "server_id"})

# Anything smaller is read as seconds (1e11 s is year ~5100, 1e11 ms is 1973).
_SECONDS_CUTOFF = 1e11

# 9999-12-31T23:59:59.999Z; anything later cannot be a real event time.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def _required_str(values: Mapping[str, Any], key: str) -> str:
    value = values.get(key)
    if value is None:
        raise EventValidationError(f"missing {key}")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise EventValidationError(f"invalid {key}")
    text = str(value).strip()
    if not text:
        raise EventValidationError(f"missing {key}")
    return text


def resolve_timestamp(raw: Any, received_at_ms: int) -> int:
    """Return ``raw`` as epoch milliseconds, or ``received_at_ms`` if unusable."""
    if raw is None or isinstance(raw, bool):
        return received_at_ms

    if not isinstance(raw, (int, float, str)):
        return received_at_ms
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (ValueError, OverflowError):
        return received_at_ms

    if not math.isfinite(value) or value < 0:
        return received_at_ms
    if value < _SECONDS_CUTOFF:
        value *= 1000
    if value > MAX_TIMESTAMP_MS:
        return received_at_ms
    return int(round(value))


def _coerce_field(key: str, value: Any) -> FieldValue:
    if not key:
        raise EventValidationError("empty field name")
    if not isinstance(value, FIELD_VALUE_TYPES):
        raise EventValidationError(f"invalid value for field {key!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise EventValidationError(f"invalid value for field {key!r}")
    return value


def canonicalize(
    values: Mapping[str, Any],
    *,
    server_id: str,
    received_at_ms: int,
    allowed_types: Optional[FrozenSet[str]] = None,
) -> CanonicalEvent:
    """Build a :class:`CanonicalEvent` or raise :class:`EventValidationError`.

    Pure function of its inputs: the same descriptor always yields the same
    event (the timestamp default aside, which comes from ``received_at_ms``).
    """
    event_type = _required_str(values, "type")
    match_id = _required_str(values, "match_id")

    if allowed_types is not None and event_type not in allowed_types:
        raise EventValidationError(f"unrecognized type {event_type!r}")

    fields = {
        key: _coerce_field(key, value)
        for key, value in values.items()
        if key not in RESERVED_KEYS
    }

    return CanonicalEvent(
        type=event_type,
        match_id=match_id,
        timestamp=resolve_timestamp(values.get("timestamp"), received_at_ms),
        server_id=server_id,
        fields=fields,
    )
