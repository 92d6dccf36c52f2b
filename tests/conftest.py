from __future__ import annotations

"""Pytest fixtures for the ingest gateway.

All external services (Supabase token store, ClickHouse sink) are stubbed so we
can exercise the request pipeline end-to-end without network round-trips.
"""

import asyncio
import os
import sys
import secrets
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

# ---------------------------------------------------------------------------
# Runtime env for the application
# ---------------------------------------------------------------------------

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test_key")
os.environ.setdefault("FRONTEND_ORIGIN", "https://dashboard.test")

# Ensure project root on PYTHONPATH so `tests.supabase_stub` resolves
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Boot the app once
from telemetry_gateway.main import create_app, limiter  # noqa: E402, WPS433
from telemetry_gateway.models import CanonicalEvent, ServerContext  # noqa: E402
from telemetry_gateway.utils.dependencies import get_sink  # noqa: E402
from telemetry_gateway.utils.errors import AuthError, SinkError  # noqa: E402
from telemetry_gateway.utils.sink import SinkWriter  # noqa: E402

app: FastAPI = create_app()
client = TestClient(app)

INGEST_PATH = "/v1/events/batch"
TOKEN_HEADER = "X-Server-Token"

# ---------------------------------------------------------------------------
# In-process token store used to simulate the `server_tokens` table
# ---------------------------------------------------------------------------

_token_store: Dict[str, Dict[str, Any]] = {}


class FakeSink(SinkWriter):
    """Records every bulk write; optionally fails or stalls."""

    def __init__(self, *, fail: bool = False, delay: float = 0.0):
        super().__init__(max_connections=4)
        self.fail = fail
        self.delay = delay
        self.calls: List[List[CanonicalEvent]] = []
        self.completed = 0

    async def _insert(self, events: Sequence[CanonicalEvent]) -> None:
        self.calls.append(list(events))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise SinkError("sink unavailable", retryable=True)
        self.completed += 1

    @property
    def rows(self) -> List[CanonicalEvent]:
        return [event for call in self.calls for event in call]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture()
def api_client() -> TestClient:  # noqa: D401 – simple alias
    return client


@pytest.fixture()
def fake_sink():
    """Install a recording sink in place of ClickHouse."""
    sink = FakeSink()
    app.dependency_overrides[get_sink] = lambda: sink
    yield sink
    app.dependency_overrides.pop(get_sink, None)


@pytest.fixture()
def patch_verify(monkeypatch):  # noqa: D401
    """Patch verify_server_token to use the in-memory store."""

    from telemetry_gateway.utils import auth as auth_mod
    from telemetry_gateway.utils import security_utils as sec

    async def _verify(token: str, _supabase) -> ServerContext:  # noqa: ANN001
        row = _token_store.get(token)
        if row is None:
            raise AuthError("invalid_token")
        return ServerContext(server_id=row["server_id"], scopes=row["scopes"], token_id=row["token_id"])

    # Patch the call-site that imported `verify_server_token` at import-time as
    # well as the canonical module.
    monkeypatch.setattr(sec, "verify_server_token", _verify, raising=True)
    monkeypatch.setattr(auth_mod, "verify_server_token", _verify, raising=True)
    yield


# ---------------------------------------------------------------------------
# Helper: create token rows in the stub store
# ---------------------------------------------------------------------------

def make_token(server_id: str, scopes: list[str] | None = None) -> str:  # noqa: D401
    raw = "srv_" + secrets.token_urlsafe(8)
    _token_store[raw] = {
        "token_id": secrets.token_hex(4),
        "server_id": server_id,
        "scopes": scopes if scopes is not None else ["server"],
    }
    return raw
