from __future__ import annotations

"""Application-level configuration helpers (env → constants).

Everything here is read once at import time and treated as read-only for the
lifetime of the process, so request handlers may share these values freely.
"""

# Standard library
import os
from pathlib import Path
from typing import FrozenSet, Optional

import yaml

__all__ = [
    "ALLOWED_ORIGINS",
    "SERVER_TOKEN_HEADER",
    "EVENT_TYPE_ALLOWLIST",
    "SINK_TIMEOUT_SECONDS",
    "MAX_BATCH_BYTES",
    "INGEST_RATE_LIMIT",
    "CLICKHOUSE_HTTP_ENDPOINT",
    "CLICKHOUSE_USER",
    "CLICKHOUSE_PASSWORD",
    "CLICKHOUSE_TABLE",
    "CLICKHOUSE_MAX_CONNECTIONS",
    "load_event_type_allowlist",
]


def _collect_origins() -> list[str]:
    """Collect allowed CORS origins from the environment.

    The gateway is called by game servers, not browsers, so an empty list is a
    perfectly valid outcome here.
    """
    origins: list[str] = []
    for name in ("FRONTEND_ORIGIN", "DOCS_ORIGIN", "EXTRA_ORIGIN"):
        if (val := os.getenv(name)):
            origins.append(val)
    return origins


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def load_event_type_allowlist(
    inline: Optional[str] = None,
    path: Optional[str] = None,
) -> Optional[FrozenSet[str]]:
    """Return the recognised event types, or ``None`` when every type is accepted.

    Two sources are merged:

    * ``EVENT_TYPE_ALLOWLIST`` – comma separated names, handy for small setups.
    * ``EVENT_TYPE_ALLOWLIST_FILE`` – a YAML document of the form::

          event_types:
            - match_start
            - player_jump

    If neither is configured the gateway runs in open-extension mode.
    """
    inline = os.getenv("EVENT_TYPE_ALLOWLIST") if inline is None else inline
    path = os.getenv("EVENT_TYPE_ALLOWLIST_FILE") if path is None else path

    names: set[str] = set()
    configured = False

    if inline:
        configured = True
        names.update(part.strip() for part in inline.split(",") if part.strip())

    if path:
        configured = True
        with Path(path).open("r", encoding="utf-8") as fp:
            doc = yaml.safe_load(fp) or {}
        entries = doc.get("event_types") if isinstance(doc, dict) else doc
        if not isinstance(entries, list):
            raise RuntimeError(f"{path}: expected a list under 'event_types'")
        names.update(str(entry).strip() for entry in entries if str(entry).strip())

    return frozenset(names) if configured else None


ALLOWED_ORIGINS: list[str] = _collect_origins()

# Name of the header carrying the per-server credential.  Never read from the
# body or the query string.
SERVER_TOKEN_HEADER: str = os.getenv("SERVER_TOKEN_HEADER", "X-Server-Token")

EVENT_TYPE_ALLOWLIST: Optional[FrozenSet[str]] = load_event_type_allowlist()

SINK_TIMEOUT_SECONDS: float = _env_float("SINK_TIMEOUT_SECONDS", 5.0)
MAX_BATCH_BYTES: int = _env_int("MAX_BATCH_BYTES", 256 * 1024)
INGEST_RATE_LIMIT: str = os.getenv("INGEST_RATE_LIMIT", "600/minute")

# ClickHouse HTTP interface, e.g. https://ch.example.com:8443
CLICKHOUSE_HTTP_ENDPOINT: Optional[str] = os.getenv("CLICKHOUSE_HTTP_ENDPOINT")
CLICKHOUSE_USER: Optional[str] = os.getenv("CLICKHOUSE_USER")
CLICKHOUSE_PASSWORD: Optional[str] = os.getenv("CLICKHOUSE_PASSWORD")
CLICKHOUSE_TABLE: str = os.getenv("CLICKHOUSE_TABLE", "telemetry_events")
CLICKHOUSE_MAX_CONNECTIONS: int = _env_int("CLICKHOUSE_MAX_CONNECTIONS", 10)
