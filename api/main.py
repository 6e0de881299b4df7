"""
api/main.py -- FastAPI application entry point for boardkeep.

Exposes the session core over HTTP: signin/signup create sessions, every other
route resolves the caller's bearer token into a SessionTransaction first.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store, service, bootstrap owner, sweep task) and
shutdown (cancel sweep task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.sessions import router as sessions_router
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AuthStore
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def log_level(settings: Settings) -> int:
    """DEBUG=true also logs each session renewal and sweep tick at DEBUG."""
    return logging.DEBUG if settings.debug else logging.INFO


logging.basicConfig(
    level=log_level(get_settings()),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("boardkeep.api")


def build_service(settings: Settings) -> AuthService:
    """Wire an AuthService from settings. Shared by the app lifespan and the CLI."""
    return AuthService(
        AuthStore(settings.database_url),
        token_lifespan=settings.token_lifespan_seconds,
        renew_ttl=settings.token_renew_seconds,
        node_id=settings.node_id,
        min_password_length=settings.min_password_length,
    )


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(service: AuthService, interval: float) -> None:
    """Delete expired sessions every `interval` seconds.

    Insert-triggered sweeps only run when someone signs in or up; this loop
    bounds how long expired rows linger on a quiet instance. The sweep is
    blocking database I/O, so it runs in the threadpool. A failed sweep is
    logged and retried on the next tick. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(service.sweep)
        except AuthError:
            logger.exception("Periodic session sweep failed")
            continue
        logger.debug("Periodic sweep removed %d session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Service (store + engine) first -- creates the tables.
      2. Owner bootstrap second -- needs the users table.
      3. Sweep task last -- references app.state.auth_service.
    """
    settings = get_settings()
    logger.info("boardkeep API starting up")
    app.state.auth_service = build_service(settings)
    if settings.owner_username:
        app.state.auth_service.ensure_owner(settings.owner_username, settings.owner_password)
    app.state.sweep_task = None
    if settings.sweep_interval_seconds > 0:
        app.state.sweep_task = asyncio.create_task(
            _sweep_loop(app.state.auth_service, settings.sweep_interval_seconds)
        )
    logger.info("Auth initialized (sweep_interval=%ds)", settings.sweep_interval_seconds)

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
    app.state.auth_service.store.close()
    logger.info("boardkeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="boardkeep API",
    description="Session and account core: signin, signup, device sessions and invites.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API in one envelope, {"error": {code, message,
# detail}}, whatever raised it.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an auth.errors failure with its own status and code.

    4xx messages are client-safe by construction. 5xx errors may wrap driver
    errors, so they are logged with their cause and answered generically.
    """
    message = str(exc)
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc, exc_info=exc)
        message = "An unexpected error occurred."
    response = _error_response(exc.status_code, exc.code, message)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Unknown paths and wrong methods land here with Starlette's own status."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
