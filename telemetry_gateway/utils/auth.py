"""Authentication dependency for ingest routes.

Game servers authenticate with an opaque server token carried in a dedicated
header (``SERVER_TOKEN_HEADER``).  The token is never read from the body or the
query string.  Resolution happens before the body is read, so a request that
fails here is rejected without a single element being parsed.
"""

from __future__ import annotations

from fastapi import Depends, Request

from telemetry_gateway.models import Scope, ServerContext
from telemetry_gateway.settings import SERVER_TOKEN_HEADER
from telemetry_gateway.utils.dependencies import get_supabase_async
from telemetry_gateway.utils.errors import AuthError
from telemetry_gateway.utils.security_utils import verify_server_token


def require_server_token(scope: str = Scope.event_ingest.value):
    """Dependency factory resolving the server token header to a :class:`ServerContext`.

    Example::

        server: ServerContext = Depends(require_server_token())
    """

    async def _auth_dependency(
        request: Request,
        supabase=Depends(get_supabase_async),
    ) -> ServerContext:
        token = (request.headers.get(SERVER_TOKEN_HEADER) or "").strip()
        if not token:
            raise AuthError("missing_server_token")

        server = await verify_server_token(token, supabase)
        if not server.has_scope(scope):
            raise AuthError("insufficient_scope")

        request.state.server_id = server.server_id
        request.state.token_id = server.token_id
        return server

    return _auth_dependency
