"""FastAPI dependency providers for external clients."""

from __future__ import annotations

from typing import AsyncGenerator
import asyncio

from supabase import acreate_client
from supabase import AsyncClient

from telemetry_gateway import SUPABASE_URL, SUPABASE_KEY
from telemetry_gateway.settings import (
    CLICKHOUSE_HTTP_ENDPOINT,
    CLICKHOUSE_MAX_CONNECTIONS,
    CLICKHOUSE_PASSWORD,
    CLICKHOUSE_TABLE,
    CLICKHOUSE_USER,
    SINK_TIMEOUT_SECONDS,
)
from telemetry_gateway.utils.sink import ClickHouseSink, LoggingSink, SinkWriter


_cached_client: AsyncClient | None = None
_cached_loop: asyncio.AbstractEventLoop | None = None

_cached_sink: SinkWriter | None = None
_cached_sink_loop: asyncio.AbstractEventLoop | None = None


async def _get_cached_client() -> AsyncClient:
    """Return a cached Supabase async client tied to the current event loop.

    Re-using an ``AsyncClient`` created on a *different* loop raises
    ``RuntimeError('Event loop is closed')`` once its httpx connections attempt
    I/O, so the cache is per-loop rather than per-process.
    """

    global _cached_client, _cached_loop

    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError("Supabase env vars not configured")

    current_loop = asyncio.get_running_loop()

    if (
        _cached_client is None
        or _cached_loop is None
        or _cached_loop is not current_loop
        or _cached_loop.is_closed()
    ):
        _cached_client = await acreate_client(SUPABASE_URL, SUPABASE_KEY)  # type: ignore[arg-type]
        _cached_loop = current_loop

    return _cached_client


async def get_supabase_async() -> AsyncGenerator[AsyncClient, None]:
    """FastAPI dependency yielding the Supabase client backing the token store.

    Tests that set ``SUPABASE_URL`` to a special ``https://test.`` endpoint will
    receive a stub client that never touches the network.
    """

    if SUPABASE_URL and SUPABASE_URL.startswith("https://test."):
        from importlib import import_module

        try:
            SupabaseStub = getattr(import_module("tests.supabase_stub"), "SupabaseStub")  # type: ignore[assignment]
        except ModuleNotFoundError as exc:  # pragma: no cover – production safety guard
            raise RuntimeError(
                "Supabase test stub not found – ensure tests package contains supabase_stub.py"
            ) from exc

        client: AsyncClient = SupabaseStub()  # type: ignore[assignment]
        yield client
        return

    client = await _get_cached_client()
    yield client


def build_sink() -> SinkWriter:
    """Create the configured sink writer (ClickHouse, or a logging sink in dev)."""
    if not CLICKHOUSE_HTTP_ENDPOINT:
        return LoggingSink(max_connections=CLICKHOUSE_MAX_CONNECTIONS)
    return ClickHouseSink(
        CLICKHOUSE_HTTP_ENDPOINT,
        CLICKHOUSE_TABLE,
        user=CLICKHOUSE_USER,
        password=CLICKHOUSE_PASSWORD,
        max_connections=CLICKHOUSE_MAX_CONNECTIONS,
        # httpx gives up slightly after the orchestrator's own deadline
        timeout=SINK_TIMEOUT_SECONDS + 1,
    )


async def get_sink() -> SinkWriter:
    """FastAPI dependency returning the shared sink writer (connection pool).

    Cached per event loop for the same reason as the Supabase client.
    """

    global _cached_sink, _cached_sink_loop

    current_loop = asyncio.get_running_loop()
    if _cached_sink is None or _cached_sink_loop is not current_loop or current_loop.is_closed():
        _cached_sink = build_sink()
        _cached_sink_loop = current_loop
    return _cached_sink
