#!/usr/bin/env python3
"""Create the ClickHouse table the gateway writes to (idempotent).

Reads ``CLICKHOUSE_HTTP_ENDPOINT`` / ``CLICKHOUSE_USER`` /
``CLICKHOUSE_PASSWORD`` / ``CLICKHOUSE_TABLE`` from the environment (or
``.env``).
"""

from __future__ import annotations

import asyncio
import sys

from telemetry_gateway.settings import (
    CLICKHOUSE_HTTP_ENDPOINT,
    CLICKHOUSE_PASSWORD,
    CLICKHOUSE_TABLE,
    CLICKHOUSE_USER,
)
from telemetry_gateway.utils.sink import ClickHouseSink


async def _run() -> None:
    if not CLICKHOUSE_HTTP_ENDPOINT:
        print("CLICKHOUSE_HTTP_ENDPOINT not set – nothing to do", file=sys.stderr)
        sys.exit(1)

    sink = ClickHouseSink(
        CLICKHOUSE_HTTP_ENDPOINT,
        CLICKHOUSE_TABLE,
        user=CLICKHOUSE_USER,
        password=CLICKHOUSE_PASSWORD,
    )
    try:
        await sink.ensure_table()
    finally:
        await sink.aclose()
    print(f"Table {CLICKHOUSE_TABLE} ready")


if __name__ == "__main__":
    asyncio.run(_run())
