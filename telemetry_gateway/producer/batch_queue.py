"""Per-thread queue of completed events for one flush cycle."""

from __future__ import annotations

import json
from typing import Iterable, List, Union
from urllib.parse import urlencode

from telemetry_gateway.producer.builder import EventBuilder, _legacy_value


class QueueFull(Exception):
    """Raised by :meth:`BatchQueue.append` once ``max_events`` are queued."""


class BatchQueue:
    """Ordered, single-owner accumulation of terminated event objects.

    Not thread-safe: each producer thread owns its own queue.  Once
    ``max_events`` events are queued, ``append`` raises :class:`QueueFull`
    until the queue is flushed.  ``requeue`` is not bounded.
    """

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._events: List[str] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def full(self) -> bool:
        return len(self._events) >= self.max_events

    def append(self, event: Union[str, EventBuilder]) -> None:
        """Queue one completed event.

        Accepts a terminated :class:`EventBuilder` or an already serialized
        object.  Unterminated or otherwise invalid objects raise ``ValueError``.
        """
        if self.full:
            raise QueueFull(f"queue holds {self.max_events} events; flush first")
        if isinstance(event, EventBuilder):
            if not event.terminated:
                raise ValueError("event is not terminated")
            event = event.terminate()
        try:
            decoded = json.loads(event)
        except ValueError as exc:
            raise ValueError("event is not a complete JSON object") from exc
        if not isinstance(decoded, dict):
            raise ValueError("event is not a complete JSON object")
        if not decoded:
            raise ValueError("event has no fields")
        self._events.append(event)

    def drain(self) -> List[str]:
        """Take every queued event, leaving the queue empty."""
        events, self._events = self._events, []
        return events

    def requeue(self, events: Iterable[str]) -> None:
        """Put unsent events back in front of anything queued since."""
        self._events[:0] = list(events)

    @staticmethod
    def render_json(events: List[str]) -> bytes:
        return ("[" + ",".join(events) + "]").encode()

    @staticmethod
    def render_legacy(events: List[str]) -> bytes:
        lines = []
        for event in events:
            values = json.loads(event)
            lines.append(urlencode({key: _legacy_value(value) for key, value in values.items()}))
        return "\n".join(lines).encode()
