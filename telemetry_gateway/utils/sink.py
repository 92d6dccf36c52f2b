"""Sink writers – the columnar store behind the gateway.

A sink receives one request's accepted events in a single ``write_batch`` call
and must either persist all of them or none.  Implementations raise
:class:`SinkError` on failure and must be safe to call from many concurrent
requests.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

import httpx

from telemetry_gateway.models import CanonicalEvent
from telemetry_gateway.utils.errors import SinkError
from telemetry_gateway.utils.logger import logger

__all__ = ["SinkWriter", "ClickHouseSink", "LoggingSink"]


class SinkWriter:
    """Base class: bounded connection slots around a single bulk insert."""

    def __init__(self, max_connections: int = 10):
        self._slots = asyncio.Semaphore(max_connections)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        """Hold one connection slot for the duration of a write."""
        await self._slots.acquire()
        try:
            yield
        finally:
            self._slots.release()

    async def write_batch(self, events: Sequence[CanonicalEvent]) -> None:
        if not events:
            return
        async with self.acquire():
            await self._insert(events)

    async def _insert(self, events: Sequence[CanonicalEvent]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class LoggingSink(SinkWriter):
    """Development sink used when no ClickHouse endpoint is configured."""

    async def _insert(self, events: Sequence[CanonicalEvent]) -> None:
        logger.info(
            "sink.skipped",
            extra={"extra": {"rows": len(events), "reason": "CLICKHOUSE_HTTP_ENDPOINT not set"}},
        )


# ---------------------------------------------------------------------------
# ClickHouse (HTTP interface, JSONEachRow)
# ---------------------------------------------------------------------------

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    type LowCardinality(String),
    match_id String,
    timestamp UInt64,
    server_id LowCardinality(String),
    fields String
) ENGINE = MergeTree()
ORDER BY (server_id, match_id, timestamp)
"""


class ClickHouseSink(SinkWriter):
    """Bulk-insert canonical events through the ClickHouse HTTP interface.

    One request body carries the whole batch as ``JSONEachRow``.  A single
    INSERT below ``max_insert_block_size`` rows is applied atomically by
    MergeTree tables, which is what gives the gateway its all-or-nothing
    accounting.  ``fields`` is stored as a JSON string so mixed scalar types
    survive.
    """

    def __init__(
        self,
        endpoint: str,
        table: str = "telemetry_events",
        *,
        user: Optional[str] = None,
        password: Optional[str] = None,
        max_connections: int = 10,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(max_connections=max_connections)
        self.endpoint = endpoint.rstrip("/")
        self.table = table
        auth = (user, password) if user and password else None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            auth=auth,
            limits=httpx.Limits(max_connections=max_connections),
        )

    @staticmethod
    def encode_rows(events: Sequence[CanonicalEvent]) -> str:
        lines: List[str] = []
        for event in events:
            row = event.to_row()
            row["fields"] = json.dumps(row["fields"], separators=(",", ":"))
            lines.append(json.dumps(row, separators=(",", ":")))
        return "\n".join(lines)

    async def _post(self, query: str, content: str = "") -> httpx.Response:
        try:
            resp = await self._client.post(
                self.endpoint,
                params={"query": query},
                content=content.encode(),
                headers={"Content-Type": "text/plain"},
            )
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SinkError("sink timeout", retryable=True) from exc
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise SinkError(f"sink rejected batch (HTTP {code})", retryable=code >= 500) from exc
        except httpx.HTTPError as exc:
            raise SinkError("sink unavailable", retryable=True) from exc
        return resp

    async def _insert(self, events: Sequence[CanonicalEvent]) -> None:
        await self._post(f"INSERT INTO {self.table} FORMAT JSONEachRow", self.encode_rows(events))

    async def ensure_table(self) -> None:
        await self._post(CREATE_TABLE_SQL.format(table=self.table))

    async def aclose(self) -> None:
        await self._client.aclose()
