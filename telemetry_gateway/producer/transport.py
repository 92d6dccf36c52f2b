"""HTTP transport from a producer to the ingest gateway."""

from __future__ import annotations

from typing import List, Optional

import httpx

from telemetry_gateway.models import BatchResultResponse, ErrorKind
from telemetry_gateway.producer.batch_queue import BatchQueue
from telemetry_gateway.utils.errors import AuthError, ParseError

DEFAULT_PATH = "/v1/events/batch"


class TransportClient:
    """Ship queued events to the gateway.

    The server token travels in its own header, never in the body.  ``legacy``
    switches the body to the URL-encoded line format for producers that have
    not migrated yet; the choice is made per client, the gateway decides per
    request.

    Usage::

        async with TransportClient("https://ingest.example.com", token) as transport:
            result = await transport.flush(queue)
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        legacy: bool = False,
        token_header: str = "X-Server-Token",
        path: str = DEFAULT_PATH,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.legacy = legacy
        self.path = path
        self._headers = {
            token_header: token,
            "Content-Type": "application/x-www-form-urlencoded" if legacy else "application/json",
        }
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def needs_resend(result: BatchResultResponse) -> bool:
        """``processed == 0`` on a non-empty batch means nothing was stored."""
        return result.total > 0 and result.processed == 0

    async def send(self, events: List[str]) -> BatchResultResponse:
        """POST one batch and return the gateway's outcome document.

        Raises :class:`AuthError` on 401, :class:`ParseError` on 400, and
        ``httpx.HTTPStatusError`` for any other non-2xx status.
        """
        body = BatchQueue.render_legacy(events) if self.legacy else BatchQueue.render_json(events)
        resp = await self._client.post(self.path, content=body, headers=self._headers)

        if resp.status_code == 401:
            raise AuthError(_detail(resp, "unauthorized"))
        if resp.status_code == 400:
            raise ParseError(_detail(resp, "bad request"))
        resp.raise_for_status()
        return BatchResultResponse.model_validate(resp.json())

    async def flush(self, queue: BatchQueue) -> Optional[BatchResultResponse]:
        """Send everything queued.

        Transport failures put the whole batch back; a batch the sink rejected
        puts back the events that failed at the sink.  Auth and parse failures
        are raised and the events dropped.

        Returns ``None`` when the queue was empty.
        """
        events = queue.drain()
        if not events:
            return None
        try:
            result = await self.send(events)
        except httpx.HTTPError:
            queue.requeue(events)
            raise
        if self.needs_resend(result):
            # only events that reached the sink stage are worth another try
            queue.requeue(events[err.index] for err in result.errors if err.kind == ErrorKind.sink)
        return result


def _detail(resp: httpx.Response, default: str) -> str:
    try:
        return str(resp.json().get("detail", default))
    except ValueError:
        return default
