"""Telemetry batch ingest – JSON array or legacy URL-encoded lines → sink."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

# Rate limiter exported by main.py
from telemetry_gateway.main import limiter
from telemetry_gateway.models import (
    BatchResultResponse,
    ErrorResponse,
    RawBatchRequest,
    ServerContext,
)
from telemetry_gateway.settings import (
    EVENT_TYPE_ALLOWLIST,
    INGEST_RATE_LIMIT,
    MAX_BATCH_BYTES,
    SINK_TIMEOUT_SECONDS,
)
from telemetry_gateway.utils.auth import require_server_token
from telemetry_gateway.utils.batching import now_ms, process_batch
from telemetry_gateway.utils.dependencies import get_sink
from telemetry_gateway.utils.logger import logger
from telemetry_gateway.utils.sink import SinkWriter
from telemetry_gateway.utils.wire_format import parse_batch

router = APIRouter(prefix="/v1", tags=["events"])


@router.post(
    "/events/batch",
    response_model=BatchResultResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse, "description": "Body matches neither wire format"},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse, "description": "Missing or unknown server token"},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    },
)
@limiter.limit(INGEST_RATE_LIMIT)
async def ingest_batch(
    request: Request,
    server: ServerContext = Depends(require_server_token()),
    sink: SinkWriter = Depends(get_sink),
):
    """Accept one batch of gameplay events.

    The response body is the contract: a ``200`` with ``processed == 0`` means
    nothing was stored and the producer should resend.
    """
    received_at_ms = now_ms()

    # ---------------------------------------------------------------------
    # Payload size guard – reject oversized bodies before reading them when
    # the client announces the length, and after reading otherwise.
    # ---------------------------------------------------------------------
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_BATCH_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="batch_too_large")

    body = await request.body()
    if len(body) > MAX_BATCH_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="batch_too_large")

    raw = RawBatchRequest(
        body=body,
        content_type=request.headers.get("content-type"),
        request_id=request.headers.get("x-request-id"),
        source_host=request.headers.get("x-server-host") or (request.client.host if request.client else None),
    )

    parsed = parse_batch(raw)

    result = await process_batch(
        parsed,
        server,
        sink,
        sink_timeout=SINK_TIMEOUT_SECONDS,
        allowed_types=EVENT_TYPE_ALLOWLIST,
        received_at_ms=received_at_ms,
        is_disconnected=request.is_disconnected,
    )

    logger.info(
        "ingest.batch",
        extra={
            "extra": {
                "server_id": server.server_id,
                "format": parsed.format.value,
                "total": result.total,
                "processed": result.processed,
                "errors": len(result.errors),
                "source_host": raw.source_host,
                "request_id": raw.request_id,
            }
        },
    )

    return BatchResultResponse.from_result(result)
