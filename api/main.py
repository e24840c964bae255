"""
api/main.py -- FastAPI application entry point for Keyward.

Exposes the session service and user management over HTTP. The auth core
(auth/) knows nothing about HTTP; this module owns the status code mapping.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan handles startup (component graph, default admin, mirror sync, purge
task) and shutdown (cancel purge task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.bootstrap import AuthComponents, build_components, create_default_admin
from auth.errors import (
    AccountInactive,
    AccountLocked,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidRefreshToken,
    MissingToken,
    NotFound,
    StoreUnavailable,
)
from core.clock import from_iso, utcnow
from core.config import get_settings
from mirror.sync import reconcile

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyward.api")

# Domain error -> HTTP status. Subclasses not listed fall back to their
# nearest listed base class via the MRO walk in _status_for().
_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    InvalidCredentials: 401,
    AccountInactive: 401,
    AccountLocked: 423,
    MissingToken: 401,
    InvalidRefreshToken: 401,
    DuplicateEmail: 409,
    NotFound: 404,
    StoreUnavailable: 503,
}

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh-token ledger rows every interval_seconds.

    Runs as a background asyncio task started in lifespan startup. The purge
    itself is a blocking DB call, so it runs in a worker thread. A failed
    purge is logged and retried on the next tick; expired rows are ignored by
    the ledger anyway. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.ledger.purge_expired)
        except StoreUnavailable:
            logger.warning("Refresh token purge skipped: store unavailable")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Components first -- builds the schema; everything else uses the store.
      2. Default admin second -- only when the users table is empty.
      3. Mirror sync third -- add-only, so it never touches the admin.
      4. Purge task last -- references app.state.ledger.
    """
    settings = get_settings()
    logger.info("Keyward API starting up")
    components = build_components(settings)
    _attach(app, components)

    create_default_admin(components.store, settings, components.mirror)
    if settings.mirror_sync_on_startup:
        reconcile(components.store, components.mirror.read_records())

    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    components.close()
    logger.info("Keyward API shutdown complete")


def _attach(app: FastAPI, components: AuthComponents) -> None:
    """Expose components on app.state for route handlers and dependencies."""
    app.state.components = components
    app.state.store = components.store
    app.state.ledger = components.ledger
    app.state.issuer = components.issuer
    app.state.sessions = components.sessions
    app.state.mirror = components.mirror


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Keyward API",
    description="Credential verification, brute-force lockout, and session lifecycle.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _status_for(exc: AuthError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 400


def _retry_after_seconds(locked_until: str | None) -> int | None:
    until = from_iso(locked_until)
    if until is None:
        return None
    return max(1, math.ceil((until - utcnow()).total_seconds()))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map domain errors to HTTP responses.

    AccountLocked carries Retry-After derived from locked_until. Auth
    responses are never cached [M5].
    """
    response = JSONResponse(
        status_code=_status_for(exc),
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    if isinstance(exc, AccountLocked):
        retry_after = _retry_after_seconds(exc.locked_until)
        if retry_after is not None:
            response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler synchronously when the
    limited route is a sync endpoint. Retry-After is the limit window.
    """
    retry_after = int(getattr(exc, "retry_after", 0) or exc.limit.limit.get_expiry())
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many login attempts, please try again later.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it -- str(dict) produces a Python repr, not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    store = getattr(request.app.state, "store", None)
    db_ok = store is not None and store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
