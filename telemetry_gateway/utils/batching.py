"""Batch orchestration: canonicalize every element, write once, account.

Per-element failures (parse, validation) are recorded against their original
index and never affect siblings.  Every event that passes validation goes to the
sink in one bulk call; if that call fails or times out, all of them are marked
with the sink error and ``processed`` stays at zero.  There is no retry here –
producers resend when they see ``processed == 0``.
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from typing import Awaitable, Callable, FrozenSet, List, Optional, Sequence, Tuple

from telemetry_gateway.models import (
    BatchResult,
    CanonicalEvent,
    ErrorKind,
    ParsedBatch,
    ServerContext,
)
from telemetry_gateway.utils.errors import EventValidationError, SinkError
from telemetry_gateway.utils.event_validation import canonicalize
from telemetry_gateway.utils.logger import logger
from telemetry_gateway.utils.sink import SinkWriter

__all__ = ["process_batch", "write_with_deadline", "now_ms"]


def now_ms() -> int:
    return int(time.time() * 1000)


async def write_with_deadline(
    sink: SinkWriter,
    events: Sequence[CanonicalEvent],
    timeout: float,
) -> None:
    """Run ``sink.write_batch`` bounded by ``timeout``.

    Once issued the write is shielded: cancelling the caller (client went
    away) does not interrupt it, so no write is left in an unknown state.
    Only the deadline itself cancels it.
    """
    write = asyncio.ensure_future(asyncio.wait_for(sink.write_batch(events), timeout))
    try:
        await asyncio.shield(write)
    except asyncio.TimeoutError as exc:
        raise SinkError("sink timeout", retryable=True) from exc
    except asyncio.CancelledError:
        # nobody awaits the write any more; report its outcome from here
        write.add_done_callback(partial(_log_abandoned_write, rows=len(events)))
        raise


def _log_abandoned_write(write: asyncio.Future, *, rows: int) -> None:
    if write.cancelled():
        reason = "write cancelled"
    elif write.exception() is None:
        logger.info(
            "sink.write_completed",
            extra={"extra": {"rows": rows, "abandoned": True}},
        )
        return
    else:
        exc = write.exception()
        if isinstance(exc, SinkError):
            reason = exc.reason
        elif isinstance(exc, asyncio.TimeoutError):
            reason = "sink timeout"
        else:
            reason = repr(exc)
    logger.warning(
        "sink.write_failed",
        extra={"extra": {"rows": rows, "reason": reason, "abandoned": True}},
    )


async def process_batch(
    parsed: ParsedBatch,
    server: ServerContext,
    sink: SinkWriter,
    *,
    sink_timeout: float,
    allowed_types: Optional[FrozenSet[str]] = None,
    received_at_ms: Optional[int] = None,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> BatchResult:
    """Turn a parsed batch into a :class:`BatchResult`, writing accepted events."""
    result = BatchResult(total=len(parsed), format=parsed.format)
    received_at_ms = now_ms() if received_at_ms is None else received_at_ms

    accepted: List[Tuple[int, CanonicalEvent]] = []
    for element in parsed.elements:
        if not element.ok:
            result.add_error(element.index, ErrorKind.parse.value, element.error or "malformed element")
            continue
        try:
            event = canonicalize(
                element.values or {},
                server_id=server.server_id,
                received_at_ms=received_at_ms,
                allowed_types=allowed_types,
            )
        except EventValidationError as exc:
            result.add_error(element.index, ErrorKind.validation.value, exc.reason)
            continue
        accepted.append((element.index, event))

    if not accepted:
        return result.finalize()

    # Last chance to drop the work: nothing has been sent to the sink yet.
    if is_disconnected is not None and await is_disconnected():
        logger.info(
            "ingest.abandoned",
            extra={"extra": {"server_id": server.server_id, "accepted": len(accepted)}},
        )
        for index, _ in accepted:
            result.add_error(index, ErrorKind.sink.value, "client disconnected before write")
        return result.finalize()

    try:
        await write_with_deadline(sink, [event for _, event in accepted], sink_timeout)
    except SinkError as exc:
        logger.warning(
            "sink.write_failed",
            extra={
                "extra": {
                    "server_id": server.server_id,
                    "rows": len(accepted),
                    "reason": exc.reason,
                    "retryable": exc.retryable,
                }
            },
        )
        for index, _ in accepted:
            result.add_error(index, ErrorKind.sink.value, exc.reason)
    else:
        result.processed = len(accepted)

    return result.finalize()
