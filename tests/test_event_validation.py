import pytest

from telemetry_gateway.models import RawBatchRequest
from telemetry_gateway.utils.errors import EventValidationError
from telemetry_gateway.utils.event_validation import MAX_TIMESTAMP_MS, canonicalize, resolve_timestamp
from telemetry_gateway.utils.wire_format import parse_batch

RECEIVED = 1_700_000_000_000  # ms
SERVER = "srv-eu-1"


def _canon(values, **kw):
    kw.setdefault("server_id", SERVER)
    kw.setdefault("received_at_ms", RECEIVED)
    return canonicalize(values, **kw)


def test_minimal_event():
    event = _canon({"type": "match_start", "match_id": "m1"})
    assert event.type == "match_start"
    assert event.match_id == "m1"
    assert event.timestamp == RECEIVED
    assert event.server_id == SERVER
    assert event.fields == {}


def test_required_fields_are_trimmed():
    event = _canon({"type": "  match_start ", "match_id": "\tm1\n"})
    assert (event.type, event.match_id) == ("match_start", "m1")


@pytest.mark.parametrize(
    "values, reason",
    [
        ({"match_id": "m1"}, "missing type"),
        ({"type": "", "match_id": "m1"}, "missing type"),
        ({"type": "   ", "match_id": "m1"}, "missing type"),
        ({"type": "a"}, "missing match_id"),
        ({"type": "a", "match_id": None}, "missing match_id"),
        ({"type": {"nested": 1}, "match_id": "m1"}, "invalid type"),
        ({"type": "a", "match_id": True}, "invalid match_id"),
    ],
)
def test_required_field_failures(values, reason):
    with pytest.raises(EventValidationError) as exc_info:
        _canon(values)
    assert exc_info.value.reason == reason


def test_integer_match_id_is_stringified():
    assert _canon({"type": "a", "match_id": 42}).match_id == "42"


def test_server_id_from_body_is_replaced():
    event = _canon({"type": "a", "match_id": "m", "server_id": "spoofed", "hp": 3})
    assert event.server_id == SERVER
    assert "server_id" not in event.fields
    assert event.fields == {"hp": 3}


def test_json_values_keep_native_types():
    event = _canon({"type": "a", "match_id": "m", "hp": 3, "ratio": 0.5, "alive": False, "name": "x"})
    assert event.fields == {"hp": 3, "ratio": 0.5, "alive": False, "name": "x"}
    assert isinstance(event.fields["alive"], bool)


@pytest.mark.parametrize("value", [None, [1, 2], {"x": 1}, float("inf")])
def test_non_scalar_field_rejected(value):
    with pytest.raises(EventValidationError, match="invalid value for field 'extra'"):
        _canon({"type": "a", "match_id": "m", "extra": value})


def test_field_order_is_preserved():
    event = _canon({"type": "a", "z": 1, "match_id": "m", "a": 2, "m": 3})
    assert list(event.fields) == ["z", "a", "m"]


def test_allowlist_enforced_when_configured():
    allowed = frozenset({"match_start"})
    assert _canon({"type": "match_start", "match_id": "m"}, allowed_types=allowed)
    with pytest.raises(EventValidationError, match="unrecognized type 'player_jump'"):
        _canon({"type": "player_jump", "match_id": "m"}, allowed_types=allowed)


def test_open_extension_without_allowlist():
    assert _canon({"type": "anything_goes", "match_id": "m"}).type == "anything_goes"


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        (1_700_000_123, 1_700_000_123_000),        # seconds
        (1_700_000_123.5, 1_700_000_123_500),      # fractional seconds
        (1_700_000_123_456, 1_700_000_123_456),    # milliseconds
        ("1700000123", 1_700_000_123_000),          # legacy string
        (" 1700000123456 ", 1_700_000_123_456),
    ],
)
def test_timestamp_parsing(raw, expected):
    assert resolve_timestamp(raw, RECEIVED) == expected


@pytest.mark.parametrize(
    "raw",
    [None, "", "yesterday", True, -5, "nan", "inf", [1], 1e20, "1e20", 2**64, 10**400, MAX_TIMESTAMP_MS + 1],
)
def test_unusable_timestamp_defaults_to_receipt_time(raw):
    assert resolve_timestamp(raw, RECEIVED) == RECEIVED


def test_latest_representable_timestamp_is_kept():
    assert resolve_timestamp(MAX_TIMESTAMP_MS, RECEIVED) == MAX_TIMESTAMP_MS


def test_out_of_range_timestamp_fits_sink_column():
    event = _canon({"type": "a", "match_id": "m", "timestamp": 1e20})
    assert event.timestamp == RECEIVED
    assert event.timestamp < 2**64


def test_bad_timestamp_never_rejects_event():
    event = _canon({"type": "a", "match_id": "m", "timestamp": "soon"})
    assert event.timestamp == RECEIVED
    assert "timestamp" not in event.fields


# ---------------------------------------------------------------------------
# Properties across formats
# ---------------------------------------------------------------------------

def test_canonicalization_is_idempotent():
    values = {"type": "kill", "match_id": "m9", "weapon": "rail", "dmg": 100, "server_id": "x"}
    first = _canon(values)
    second = _canon(values)
    assert first == second
    assert values["server_id"] == "x"  # input left untouched


def test_legacy_and_json_agree_except_for_value_types():
    json_body = b'[{"type":"kill","match_id":"m9","weapon":"rail","dmg":100,"headshot":true}]'
    legacy_body = b"type=kill&match_id=m9&weapon=rail&dmg=100&headshot=true"

    json_values = parse_batch(RawBatchRequest(body=json_body)).elements[0].values
    legacy_values = parse_batch(RawBatchRequest(body=legacy_body)).elements[0].values

    from_json = _canon(json_values)
    from_legacy = _canon(legacy_values)

    assert (from_json.type, from_json.match_id) == (from_legacy.type, from_legacy.match_id)
    assert list(from_json.fields) == list(from_legacy.fields)
    assert from_json.fields["weapon"] == from_legacy.fields["weapon"]
    # legacy values are strings: numeric and boolean semantics are lost
    assert from_json.fields["dmg"] == 100 and from_legacy.fields["dmg"] == "100"
    assert from_json.fields["headshot"] is True and from_legacy.fields["headshot"] == "true"
