"""Wire format detection and decoding for ingest request bodies.

Two grammars are accepted on every request:

``json_batch``
    ``[{...}, {...}]`` – a JSON array of complete event objects.  Producers
    terminate each object themselves before queueing it; this module never
    closes a truncated object.  Each element is decoded on its own so one bad
    element does not take its siblings down.

``legacy_lines``
    One URL-query-encoded event per line (``type=match_start&match_id=m1``).
    Every value decodes as a string.

The format is sniffed from the body (first significant character) on every
request.  The ``Content-Type`` header is only used to produce a clearer error
message when the body does not match what the header announced.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from telemetry_gateway.models import BatchFormat, ParsedBatch, RawBatchRequest, RawEvent
from telemetry_gateway.utils.errors import ParseError
from telemetry_gateway.utils.logger import logger

__all__ = ["parse_batch", "detect_format", "decode_body"]

_WHITESPACE = " \t\r\n"


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def decode_body(body: bytes) -> str:
    """Return the body as text (UTF-8, optional BOM) or raise :class:`ParseError`."""
    try:
        text = body.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError("body is not valid UTF-8") from exc
    if not text.strip(_WHITESPACE):
        raise ParseError("empty body")
    return text


def detect_format(text: str) -> BatchFormat:
    if text.lstrip(_WHITESPACE).startswith("["):
        return BatchFormat.json_batch
    return BatchFormat.legacy_lines


def parse_batch(raw: RawBatchRequest) -> ParsedBatch:
    """Decode ``raw.body`` into an ordered list of raw events.

    Raises :class:`ParseError` when the body matches neither grammar: empty or
    undecodable bodies, trailing garbage after a JSON array, a JSON object
    where an array was announced, or text without a single ``key=value`` pair.
    Broken elements inside a recognisable body are reported per element, even
    when every element is broken.
    """
    text = decode_body(raw.body)
    fmt = detect_format(text)

    if fmt is BatchFormat.json_batch:
        elements = _parse_json_batch(text)
    else:
        if _announces_json(raw.content_type) and text.lstrip(_WHITESPACE).startswith("{"):
            raise ParseError("expected a JSON array of event objects")
        if "=" not in text:
            raise ParseError("body is neither a JSON array nor URL-encoded lines")
        elements = _parse_legacy_lines(text)

    if raw.content_type and _announces_json(raw.content_type) != (fmt is BatchFormat.json_batch):
        logger.warning(
            "ingest.content_type_mismatch",
            extra={"extra": {"content_type": raw.content_type, "format": fmt.value}},
        )

    return ParsedBatch(format=fmt, elements=elements)


def _announces_json(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


# ---------------------------------------------------------------------------
# json_batch
# ---------------------------------------------------------------------------


def _split_json_array(text: str) -> Tuple[List[str], bool]:
    """Split a JSON array body into raw element spans.

    Only string literals and bracket depth are tracked, so a malformed element
    still yields a span that can be reported on its own.  Returns the spans and
    whether the closing ``]`` was found.  Anything after the closing bracket
    other than whitespace is a :class:`ParseError`.
    """
    start_pos = text.index("[") + 1
    spans: List[str] = []
    depth = 0
    in_string = False
    escaped = False
    start = start_pos

    for pos in range(start_pos, len(text)):
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            if depth > 0:
                depth -= 1
            elif ch == "]":
                spans.append(text[start:pos])
                if text[pos + 1:].strip(_WHITESPACE):
                    raise ParseError("unexpected data after JSON array")
                return spans, True
            # a stray "}" at depth 0 stays inside the span and fails to decode
        elif ch == "," and depth == 0:
            spans.append(text[start:pos])
            start = pos + 1

    spans.append(text[start:])
    return spans, False


class _BadElement(ValueError):
    """Element-level decode failure whose message is safe to report."""


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    obj: Dict[str, Any] = {}
    for key, value in pairs:
        if key in obj:
            raise _BadElement(f"duplicate key {key!r}")
        obj[key] = value
    return obj


def _reject_constant(name: str) -> Any:
    raise _BadElement(f"non-finite number {name}")


def _decode_json_element(span: str) -> Dict[str, Any]:
    value = json.loads(
        span,
        object_pairs_hook=_reject_duplicate_keys,
        parse_constant=_reject_constant,
    )
    if not isinstance(value, dict):
        raise _BadElement("element is not an object")
    return value


def _parse_json_batch(text: str) -> List[RawEvent]:
    spans, closed = _split_json_array(text)

    # "[]" and "[   ]" are an empty batch, not an empty element.
    if closed and len(spans) == 1 and not spans[0].strip(_WHITESPACE):
        return []

    elements: List[RawEvent] = []
    last = len(spans) - 1
    for index, span in enumerate(spans):
        if index == last and not closed:
            # the array never closed; its final element cannot be trusted
            elements.append(RawEvent(index=index, error="unterminated array"))
            continue
        if not span.strip(_WHITESPACE):
            elements.append(RawEvent(index=index, error="empty element"))
            continue
        try:
            values = _decode_json_element(span)
        except _BadElement as exc:
            elements.append(RawEvent(index=index, error=str(exc)))
            continue
        except ValueError:
            elements.append(RawEvent(index=index, error="malformed JSON"))
            continue
        elements.append(RawEvent(index=index, values=values))
    return elements


# ---------------------------------------------------------------------------
# legacy_lines
# ---------------------------------------------------------------------------


def _decode_legacy_line(line: str) -> Dict[str, str]:
    pairs = parse_qsl(
        line,
        keep_blank_values=True,
        strict_parsing=True,
        encoding="utf-8",
        errors="strict",
    )
    values: Dict[str, str] = {}
    for key, value in pairs:
        if not key:
            raise _BadElement("empty key")
        if key in values:
            raise _BadElement(f"duplicate key {key!r}")
        values[key] = value
    return values


def _parse_legacy_lines(text: str) -> List[RawEvent]:
    elements: List[RawEvent] = []
    for line in text.splitlines():
        line = line.strip(_WHITESPACE)
        if not line:
            continue
        index = len(elements)
        try:
            values = _decode_legacy_line(line)
        except UnicodeDecodeError:
            elements.append(RawEvent(index=index, error="invalid percent-encoding"))
            continue
        except _BadElement as exc:
            elements.append(RawEvent(index=index, error=str(exc)))
            continue
        except ValueError:
            elements.append(RawEvent(index=index, error="malformed line"))
            continue
        elements.append(RawEvent(index=index, values=values))
    return elements
