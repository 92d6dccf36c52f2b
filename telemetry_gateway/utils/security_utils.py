"""Server token hashing and verification helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from hashlib import sha256

import asyncio
import base64
import hmac
import inspect
import os
import secrets
import bcrypt

from fastapi import HTTPException, status

from telemetry_gateway.models import ServerContext
from telemetry_gateway.utils.database import query_data, update_data
from telemetry_gateway.utils.errors import AuthError
from telemetry_gateway.utils.logger import logger

SERVER_TOKEN_TABLE = "server_tokens"
TOKEN_PREFIX = "srv_"

_TOKEN_COLUMNS = "token_id,token_sha256,token_lookup,scopes,server_id,expires_at,revoked_at"

# ---------------------------------------------------------------------------
# Helper for safe Supabase calls
# ---------------------------------------------------------------------------

async def _safe_supabase_call(coro, *, detail: str):
    """Await a Supabase async call and translate network/database errors into HTTP 503.

    Token lookups that fail for infrastructure reasons are not the caller's
    fault, so they must not surface as 401s (which producers treat as "drop").
    """
    try:
        return await coro if inspect.isawaitable(coro) else coro  # type: ignore[misc]
    except HTTPException:
        raise
    except Exception as exc:  # pragma: no cover – network/database only
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail) from exc

# ---------------------------------------------------------------------------
# Token material
# ---------------------------------------------------------------------------

def generate_server_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(24)


def hash_token(raw: str) -> str:
    """Return bcrypt(sha256(raw)) – the value stored in ``token_sha256``."""
    token_sha = sha256(raw.encode()).hexdigest()
    return bcrypt.hashpw(token_sha.encode(), bcrypt.gensalt()).decode()


def _verify_hash(token_sha: str, hashed: str) -> bool:
    return bcrypt.checkpw(token_sha.encode(), hashed.encode())


_PEPPER_ENV = "TOKEN_PEPPER"


def compute_token_lookup(raw_token: str) -> str | None:
    """Return HMAC(pepper, sha256(raw_token)) using TOKEN_PEPPER as pepper.

    If TOKEN_PEPPER is not configured (e.g., local dev), return None so callers
    skip the indexed lookup and fall back to the full scan.
    """
    key_b64 = os.getenv(_PEPPER_ENV)
    if not key_b64:
        return None
    try:
        padding_needed = (4 - len(key_b64) % 4) % 4
        pepper = base64.urlsafe_b64decode(key_b64 + "=" * padding_needed)
    except Exception:  # noqa: BLE001
        return None
    token_sha = sha256(raw_token.encode()).hexdigest()
    return hmac.new(pepper, token_sha.encode(), sha256).hexdigest()


def _matches(candidate: dict, token_sha: str) -> bool:
    stored_hash = candidate.get("token_sha256", "")
    if not stored_hash or not stored_hash.startswith(("$2b", "$2a")):
        return False
    return _verify_hash(token_sha, stored_hash)


def _parse_ts(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).astimezone(timezone.utc)


async def _find_match(rows, token_sha: str) -> dict | None:
    """Return the first row whose bcrypt hash matches, checking off the event loop."""
    for candidate in rows or []:
        if await asyncio.to_thread(_matches, candidate, token_sha):
            return candidate
    return None


async def verify_server_token(token: str, supabase) -> ServerContext:
    """Resolve a raw server token to the :class:`ServerContext` it belongs to.

    Raises :class:`AuthError` for malformed, unknown, revoked or expired
    tokens.  Store outages surface as HTTP 503 instead.
    """

    if not token.startswith(TOKEN_PREFIX):
        raise AuthError("invalid_token_format")

    token_sha = sha256(token.encode()).hexdigest()
    row = None

    # Scalable lookup: HMAC-peppered index when available.  On an index miss
    # only rows that were never indexed are scanned; without a pepper every
    # row is.
    lookup = compute_token_lookup(token)
    if lookup is not None:
        resp = await _safe_supabase_call(
            query_data(
                supabase,
                SERVER_TOKEN_TABLE,
                filters={"token_lookup": lookup},
                select_fields=_TOKEN_COLUMNS,
            ),
            detail="token_store_unreachable",
        )
        row = await _find_match(getattr(resp, "data", []), token_sha)

    if row is None:
        resp = await _safe_supabase_call(
            query_data(
                supabase,
                SERVER_TOKEN_TABLE,
                filters={} if lookup is None else {"token_lookup": ("is", "null")},
                select_fields=_TOKEN_COLUMNS,
            ),
            detail="token_store_unreachable",
        )
        row = await _find_match(getattr(resp, "data", []), token_sha)

        # Opportunistic backfill so the next request takes the indexed path
        if row is not None and lookup is not None and not row.get("token_lookup"):
            try:
                await update_data(
                    supabase,
                    SERVER_TOKEN_TABLE,
                    update_values={"token_lookup": lookup},
                    filters={"token_id": row.get("token_id")},
                )
                logger.info(
                    "auth.token",
                    extra={"extra": {"phase": "backfill_lookup", "token_id": row.get("token_id")}},
                )
            except Exception as exc:  # noqa: BLE001 – backfill must not break auth
                logger.warning(
                    "auth.token",
                    extra={"extra": {"phase": "backfill_failed", "token_id": row.get("token_id"), "error": str(exc)}},
                )

    if not row:
        raise AuthError("invalid_token")

    if row.get("revoked_at") is not None:
        raise AuthError("token_revoked")

    expires_at = _parse_ts(row.get("expires_at"))
    if expires_at and expires_at < datetime.now(timezone.utc):
        raise AuthError("token_expired")

    server_id = row.get("server_id")
    if not server_id:
        raise AuthError("token_not_bound_to_server")

    return ServerContext(
        server_id=str(server_id),
        scopes=list(row.get("scopes") or ["server"]),
        token_id=row.get("token_id"),
    )
