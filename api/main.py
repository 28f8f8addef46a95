"""
api/main.py -- FastAPI application entry point for Gatehouse.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one log line per request with latency
  2. session_middleware -- opens the request's AuthSession from the cookie,
                           commits it and sets the cookie on the way out

Lifespan handles startup (stores, hasher, signup policy, permission
evaluator, purge task) and shutdown (cancel purge task, close DB
connections) symmetrically. Swap app.state.evaluator to change how
permission tokens are checked; every AuthSession picks it up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.concurrency import run_in_threadpool

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.cookies import set_session_cookie, unsign_session_id
from auth.errors import UserFacingError
from auth.flows import signup_policy_from_settings
from auth.passwords import get_hasher
from auth.permissions import DEFAULT_EVALUATOR
from auth.session import AuthSession
from auth.session_store import SessionStore
from auth.store import UserStore
from core.config import get_settings

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Sweep expired sessions every `interval` seconds.

    The sweep itself is blocking SQL, so it runs in the thread pool.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(app.state.session_store.purge_expired)
        except Exception:
            logger.exception("Session purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores and hasher, start the purge task, tear down on exit."""
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    app.state.user_store = UserStore(settings.database_url)
    app.state.session_store = SessionStore(
        settings.database_url,
        ttl=settings.session_ttl_seconds,
        remember_ttl=settings.remember_ttl_seconds,
    )
    app.state.hasher = get_hasher()
    app.state.signup_policy = signup_policy_from_settings(settings)
    app.state.evaluator = DEFAULT_EVALUATOR
    logger.info(
        "Auth initialized (policy=%s, session_ttl=%ds, remember_ttl=%ds)",
        type(app.state.signup_policy).__name__,
        settings.session_ttl_seconds,
        settings.remember_ttl_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Session-based authentication and permission checks.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Session middleware
#
# Loading and saving sessions is blocking SQL, so both ends run in the thread
# pool. The handler in between sees request.state.auth. If the handler raises
# an unhandled exception nothing is committed.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    settings = get_settings()
    session_id = unsign_session_id(request.cookies.get(settings.session_cookie_name))
    auth = await run_in_threadpool(
        AuthSession.open,
        request.app.state.session_store,
        request.app.state.user_store,
        session_id,
        request.app.state.evaluator,
    )
    request.state.auth = auth

    response = await call_next(request)

    directive = await run_in_threadpool(auth.commit)
    if directive is not None:
        set_session_cookie(response, directive)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered after session_middleware, so it wraps it and its timing includes
# session load and commit.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(UserFacingError)
async def user_facing_error_handler(request: Request, exc: UserFacingError) -> JSONResponse:
    """Render an expected flow failure with its fixed code and message."""
    resp = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


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
    already a structured dict, use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Storage outages, hashing failures and wiring mistakes all land here. The
    traceback goes to the log only; the client receives a generic message.
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
# regardless of router registration state.
# ---------------------------------------------------------------------------


def _database_status(store: UserStore) -> str:
    try:
        with store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = _database_status(request.app.state.user_store)
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=_VERSION,
        components={"app": "ok", "database": database},
    )
