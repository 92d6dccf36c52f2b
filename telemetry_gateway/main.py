"""Entry-point for the ingest gateway ASGI app.

This module constructs the FastAPI instance, wires global middleware and
exception handlers, registers the route groups, and exposes the ``app``
variable that uvicorn imports (``uvicorn telemetry_gateway.main:app``).
"""

from __future__ import annotations

import os
import logging
import traceback
from contextvars import ContextVar
from hashlib import sha256
from time import perf_counter
from typing import Callable, Awaitable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from telemetry_gateway import APP_ENV

# Router imports live *inside* create_app() to avoid a circular dependency
# with events_routes importing `limiter` from this module before it's defined.
from telemetry_gateway.utils.errors import AuthError, ParseError
from telemetry_gateway.utils.logger import configure_logging, logger
from telemetry_gateway.settings import ALLOWED_ORIGINS, INGEST_RATE_LIMIT, SERVER_TOKEN_HEADER


def rate_limit_key(request: Request) -> str:
    """Bucket requests per server token; anonymous callers per remote address."""
    token = request.headers.get(SERVER_TOKEN_HEADER)
    if token:
        return "token:" + sha256(token.encode()).hexdigest()[:16]
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key, default_limits=[INGEST_RATE_LIMIT])


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request-level context vars for structured logging."""

    _request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        start = perf_counter()
        request_id = request.headers.get("X-Request-Id", os.urandom(4).hex())
        token = self._request_id_ctx.set(request_id)
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = request_id
        finally:
            duration_ms = (perf_counter() - start) * 1000
            logger.info(
                "request.complete",
                extra={
                    "extra": {
                        "path": request.url.path,
                        "method": request.method,
                        "status_code": response.status_code if response is not None else 500,
                        "duration_ms": round(duration_ms, 2),
                        "request_id": request_id,
                    }
                },
            )
            self._request_id_ctx.reset(token)
        return response


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Telemetry Ingest Gateway",
        version="0.1.0",
        docs_url="/docs" if APP_ENV != "production" else None,
        redoc_url=None,
        openapi_url="/openapi.json" if APP_ENV != "production" else None,
    )

    # Global middleware
    app.add_middleware(RequestContextMiddleware)
    # Rate limiting middleware (SlowAPI expects limiter via app.state)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    from slowapi.errors import RateLimitExceeded  # noqa: WPS433  (runtime import)
    from slowapi import _rate_limit_exceeded_handler

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # -------------------------------------------------------------------
    # Request-level ingest failures.  Element-level failures never get here;
    # they are reported inside the batch result.
    # -------------------------------------------------------------------

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        logger.warning(
            "ingest.auth_failed",
            extra={"extra": {"path": request.url.path, "reason": exc.reason}},
        )
        return JSONResponse(status_code=401, content={"detail": exc.reason})

    @app.exception_handler(ParseError)
    async def parse_error_handler(request: Request, exc: ParseError):
        logger.warning(
            "ingest.parse_failed",
            extra={
                "extra": {
                    "path": request.url.path,
                    "reason": exc.reason,
                    "server_id": getattr(request.state, "server_id", None),
                }
            },
        )
        return JSONResponse(status_code=400, content={"detail": exc.reason})

    # Global exception handler - logs full tracebacks for any unhandled 500s
    @app.exception_handler(Exception)
    async def log_unhandled_exceptions(request: Request, exc: Exception):
        """Log full traceback for any unhandled exception that would become a 500."""
        error_logger = logging.getLogger("uvicorn.error")
        error_logger.error(
            "UNHANDLED %s at %s %s\n%s",
            type(exc).__name__,
            request.method,
            request.url.path,
            "".join(traceback.format_tb(exc.__traceback__))
        )
        raise exc

    # -------------------------------------------------------------------
    # CORS (env-driven allow-list).  Producers are game servers, so this only
    # matters for browser-based tooling hitting the health check.
    # -------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", SERVER_TOKEN_HEADER, "X-Request-Id"],
        max_age=600,
    )

    # Health check
    @app.get("/")
    @limiter.exempt
    async def root() -> Dict[str, str]:  # pylint: disable=unused-variable
        return {"status": "ok"}

    from telemetry_gateway.routers import events_routes
    app.include_router(events_routes.router)

    return app

# The object uvicorn imports
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
