"""Error taxonomy for the ingest path.

Two request-level failures (:class:`AuthError`, :class:`ParseError`) abort the
whole request before any element is touched.  The remaining two are recorded
against individual elements in the batch result and never abort siblings.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "GatewayError",
    "AuthError",
    "ParseError",
    "EventValidationError",
    "SinkError",
]


class GatewayError(Exception):
    """Base class for every error raised by the ingest gateway."""

    kind: str = "gateway"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthError(GatewayError):
    """Missing, unknown, revoked or expired server token."""

    kind = "auth"


class ParseError(GatewayError):
    """The request body matches neither supported wire grammar."""

    kind = "parse"


class EventValidationError(GatewayError):
    """A single raw event could not be turned into a canonical event."""

    kind = "validation"


class SinkError(GatewayError):
    """The bulk write to the analytics store failed or timed out."""

    kind = "sink"

    def __init__(self, reason: str, *, retryable: Optional[bool] = None):
        super().__init__(reason)
        self.retryable = retryable
