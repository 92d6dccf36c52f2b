from __future__ import annotations

"""Domain types for one ingest request: raw wire input, parsed descriptors,
canonical rows and the per-request outcome."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Closed scalar union for the open ``fields`` bag.  ``bool`` is listed first
# because it is a subclass of ``int``.
FieldValue = Union[bool, int, float, str]
FIELD_VALUE_TYPES: Tuple[type, ...] = (bool, int, float, str)


class BatchFormat(str, Enum):
    json_batch = "json_batch"
    legacy_lines = "legacy_lines"


@dataclass(frozen=True)
class RawBatchRequest:
    """Wire-level request as received, minus the credential header.

    The server token is consumed by the auth dependency and never travels with
    the body.
    """

    body: bytes
    content_type: Optional[str] = None
    request_id: Optional[str] = None
    source_host: Optional[str] = None


@dataclass(frozen=True)
class RawEvent:
    """One element of the batch after format decoding.

    Exactly one of ``values`` / ``error`` is set.  ``index`` is the element's
    position in the request (array position or non-empty line ordinal).
    """

    index: int
    values: Optional[Mapping[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ParsedBatch:
    format: BatchFormat
    elements: List[RawEvent]

    def __len__(self) -> int:
        return len(self.elements)


@dataclass(frozen=True)
class CanonicalEvent:
    """Normalized event handed to the sink writer."""

    type: str
    match_id: str
    timestamp: int  # epoch milliseconds
    server_id: str
    fields: Dict[str, FieldValue] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        """Return the flat row shape written to the columnar store."""
        return {
            "type": self.type,
            "match_id": self.match_id,
            "timestamp": self.timestamp,
            "server_id": self.server_id,
            "fields": dict(self.fields),
        }


@dataclass
class ElementError:
    index: int
    kind: str
    reason: str


@dataclass
class BatchResult:
    """Outcome of one ingest request."""

    total: int = 0
    processed: int = 0
    errors: List[ElementError] = field(default_factory=list)
    format: Optional[BatchFormat] = None

    def add_error(self, index: int, kind: str, reason: str) -> None:
        self.errors.append(ElementError(index=index, kind=kind, reason=reason))

    def finalize(self) -> "BatchResult":
        # Sink errors are appended after validation errors; restore input order.
        self.errors.sort(key=lambda err: err.index)
        return self
