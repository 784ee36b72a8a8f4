"""
api/main.py -- FastAPI application entry point for RoleGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one access-log line per request
  2. CORSMiddleware     -- credentialed CORS for the configured SPA origins
  3. SessionMiddleware  -- itsdangerous-signed browser-session cookie
                           (HTTP-only, SameSite=Lax, Secure when configured)

Lifespan builds the shared Engine and stores, validates that the configured
default role exists, starts the expired-session purge task, and tears all of
it down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.access import AccessStore
from auth.dependencies import is_form_request
from auth.engine import AuthEngine
from auth.errors import AuthError, InvalidCsrf, MethodNotAllowed
from auth.schema import create_store_engine
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings, get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rolegate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, engine: Engine, app_settings: Settings) -> None:
    """Build the stores and the auth engine on top of engine and attach them to app.state.

    Shared by the lifespan and the test fixtures so both wire the app the
    same way.
    """
    app.state.settings = app_settings
    app.state.db_engine = engine
    app.state.user_store = UserStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.access_store = AccessStore(engine)
    app.state.auth_engine = AuthEngine(
        app.state.user_store,
        app.state.session_store,
        app.state.access_store,
        session_days=app_settings.session_days,
        default_role_key=app_settings.default_role_key,
    )


def check_default_role(access: AccessStore, app_settings: Settings) -> None:
    """Fail fast (or warn) when the configured default role is missing.

    Registrations never fail because of a missing default role -- they report
    it as skipped -- so a misconfiguration is caught here, once, at startup.
    """
    role_key = app_settings.default_role_key
    if not role_key or access.role_exists(role_key):
        return
    message = f"Default role {role_key!r} does not exist. Run 'python main.py seed' or fix DEFAULT_ROLE_KEY."
    if app_settings.require_default_role:
        raise RuntimeError(message)
    logger.warning(message)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every interval seconds.

    Expiry is enforced by every lookup; this only keeps the table small.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.session_store.purge_expired)
        except SQLAlchemyError:
            logger.exception("Expired-session purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime."""
    logger.info("RoleGate API starting up")
    engine = create_store_engine(settings.database_url)
    install_services(app, engine, settings)
    check_default_role(app.state.access_store, settings)
    logger.info("Auth store initialized (default_role=%r)", settings.default_role_key)

    purge_task = None
    if settings.session_purge_interval_seconds > 0:
        purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    if purge_task is not None:
        purge_task.cancel()
    engine.dispose()
    logger.info("RoleGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RoleGate API",
    description="Session authentication and role/permission management.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST call is outermost.
# Register innermost first: Session, then CORS.
# ---------------------------------------------------------------------------

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie=settings.session_cookie_name,
    max_age=settings.session_days * 24 * 60 * 60,
    same_site="lax",
    https_only=settings.secure_cookies,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token"],
    max_age=3600,
)


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

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
app.include_router(admin_router, prefix=settings.api_prefix, tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so the SPA can read
# data.error as a message and data.code / data.field for branching.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, field: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code, field=field).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Render expected auth failures.

    A CSRF failure on a form submission gets a bare 403 text body instead of
    JSON: the browser shows it directly.
    """
    if isinstance(exc, InvalidCsrf) and is_form_request(request):
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return _error(exc.status_code, exc.message, exc.code, exc.field)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first offending body field."""
    errors = exc.errors()
    field = None
    if errors:
        loc = [str(part) for part in errors[0].get("loc", ()) if part != "body"]
        field = loc[0] if loc else None
    return _error(400, "Invalid input", "VALIDATION_ERROR", field)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for routing errors (404, automatic 405)."""
    if exc.status_code == 405:
        response = _error(405, MethodNotAllowed.message, MethodNotAllowed.code)
        if exc.headers and "Allow" in exc.headers:
            response.headers["Allow"] = exc.headers["Allow"]
        return response
    return _error(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (store faults included).

    The raw exception is logged, never sent: clients get a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.", "INTERNAL_ERROR")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get(f"{settings.api_prefix}/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    database = "ok"
    try:
        with request.app.state.db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
