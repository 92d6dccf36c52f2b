#!/usr/bin/env python3
"""Issue a new server token for a game server instance.

Usage::

    python scripts/generate_server_token.py srv-eu-1            # print token + row
    python scripts/generate_server_token.py srv-eu-1 --json     # row as JSON only

The raw token is printed **once**; only its bcrypt hash (and, when
``TOKEN_PEPPER`` is set, the HMAC lookup value) goes into the
``server_tokens`` table.  Hand the raw token to the game server operator and
configure it as the value of the ``X-Server-Token`` header.
"""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from datetime import datetime, timedelta, timezone

from telemetry_gateway.utils.security_utils import (
    compute_token_lookup,
    generate_server_token,
    hash_token,
)


def build_row(server_id: str, token: str, expires_days: int | None) -> dict:
    expires_at = None
    if expires_days:
        expires_at = (datetime.now(timezone.utc) + timedelta(days=expires_days)).isoformat()
    return {
        "token_id": uuid.uuid4().hex[:12],
        "server_id": server_id,
        "scopes": ["server"],
        "token_sha256": hash_token(token),
        "token_lookup": compute_token_lookup(token),
        "expires_at": expires_at,
        "revoked_at": None,
    }


def main() -> None:  # noqa: D401
    parser = argparse.ArgumentParser(description="Generate a server token for the ingest gateway")
    parser.add_argument("server_id", help="Identifier written to every event from this server")
    parser.add_argument("--expires-days", type=int, default=None, help="Token lifetime in days (default: no expiry)")
    parser.add_argument("--json", action="store_true", help="Print the table row as JSON only")
    args = parser.parse_args()

    token = generate_server_token()
    row = build_row(args.server_id, token, args.expires_days)

    if args.json:
        print(json.dumps({"token": token, "row": row}))
        return

    print(f"token: {token}")
    print("row for server_tokens:")
    print(json.dumps(row, indent=2))
    if row["token_lookup"] is None:
        print("TOKEN_PEPPER not set; token_lookup left empty (full-scan auth)", file=sys.stderr)


if __name__ == "__main__":
    main()
