from __future__ import annotations

"""Unified models namespace – API (request/response) models plus the ingest
domain types re-exported from :mod:`telemetry_gateway.models.events`.

Call-sites can simply::

    from telemetry_gateway.models import ServerContext, BatchResultResponse
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from telemetry_gateway.models.events import (
    BatchFormat,
    BatchResult,
    CanonicalEvent,
    ElementError,
    FieldValue,
    ParsedBatch,
    RawBatchRequest,
    RawEvent,
)
from telemetry_gateway.models.scopes import Scope

# ---------------------------------------------------------------------------
# Authentication Models
# ---------------------------------------------------------------------------

@dataclass
class ServerContext:
    """Identity of the game server that submitted a request.

    ``server_id`` is the only source of the ``server_id`` column written to the
    sink; values sent in the request body are discarded.
    """
    server_id: str
    scopes: list[str]
    token_id: str | None = None

    def has_scope(self, scope: str) -> bool:
        """Check if the token grants a specific scope."""
        if scope in self.scopes:
            return True
        # "server" tokens imply ingest rights
        return scope == Scope.event_ingest.value and Scope.server.value in self.scopes

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ErrorKind(str, Enum):
    """Stable tags for per-element failures; ``reason`` carries the detail."""
    parse = "parse"
    validation = "validation"
    sink = "sink"

# ---------------------------------------------------------------------------
# API Pydantic models
# ---------------------------------------------------------------------------

class BaseResponse(BaseModel):
    model_config = {
        "from_attributes": True,
    }

class ErrorResponse(BaseResponse):
    detail: str = Field(..., examples=["missing_server_token"])

class BatchErrorEntry(BaseResponse):
    index: int = Field(..., description="Position of the element in the request")
    kind: ErrorKind = Field(..., description="Stable error category")
    reason: str = Field(..., examples=["missing type"])

class BatchResultResponse(BaseResponse):
    """Per-request outcome.  ``processed == 0`` means the producer should treat
    the whole batch as failed, whatever the HTTP status."""
    total: int = Field(..., description="Events attempted")
    processed: int = Field(..., description="Events written to the sink")
    errors: List[BatchErrorEntry] = Field(default_factory=list)
    format: Optional[BatchFormat] = Field(None, description="Detected wire format")

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResultResponse":
        return cls(
            total=result.total,
            processed=result.processed,
            errors=[
                BatchErrorEntry(index=err.index, kind=ErrorKind(err.kind), reason=err.reason)
                for err in result.errors
            ],
            format=result.format,
        )


__all__ = [
    "BatchErrorEntry",
    "BatchFormat",
    "BatchResult",
    "BatchResultResponse",
    "CanonicalEvent",
    "ElementError",
    "ErrorKind",
    "ErrorResponse",
    "FieldValue",
    "ParsedBatch",
    "RawBatchRequest",
    "RawEvent",
    "Scope",
    "ServerContext",
]
