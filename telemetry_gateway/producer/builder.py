"""Incremental construction of a single event object.

Script threads add fields one at a time; the serialized form stays an
unterminated JSON object (``{"type":"x","match_id":"m1"``) until
:meth:`EventBuilder.terminate` appends the closing brace.  Only terminated
objects may be queued – the gateway never closes objects for the producer.
"""

from __future__ import annotations

import json
from typing import Dict, Optional, Union
from urllib.parse import urlencode

Scalar = Union[bool, int, float, str]


class EventBuilder:
    def __init__(self, event_type: str, match_id: str, *, timestamp: Optional[Union[int, float]] = None):
        self._values: Dict[str, Scalar] = {}
        self._terminated = False
        self.set("type", event_type)
        self.set("match_id", match_id)
        if timestamp is not None:
            self.set("timestamp", timestamp)

    @property
    def terminated(self) -> bool:
        return self._terminated

    def set(self, key: str, value: Scalar) -> "EventBuilder":
        """Add one field.  Keys are unique; values must be JSON scalars."""
        if self._terminated:
            raise RuntimeError("event already terminated")
        if not isinstance(key, str) or not key:
            raise ValueError("field name must be a non-empty string")
        if key == "server_id":
            raise ValueError("server_id is assigned by the gateway")
        if key in self._values:
            raise ValueError(f"duplicate field {key!r}")
        if not isinstance(value, (bool, int, float, str)):
            raise TypeError(f"field {key!r} must be a string, number or boolean")
        self._values[key] = value
        return self

    @property
    def partial(self) -> str:
        """Serialized object so far, without the closing brace."""
        pairs = (
            f"{json.dumps(key)}:{json.dumps(value, allow_nan=False)}"
            for key, value in self._values.items()
        )
        return "{" + ",".join(pairs)

    def terminate(self) -> str:
        """Close the object and return it.  No further fields may be added."""
        self._terminated = True
        return self.partial + "}"

    def to_legacy_line(self) -> str:
        """Render the event in the legacy URL-encoded line format.

        Every value becomes a string; booleans are written as ``true`` /
        ``false``.
        """
        return urlencode({key: _legacy_value(value) for key, value in self._values.items()})


def _legacy_value(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
