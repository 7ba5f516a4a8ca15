"""
api/main.py -- FastAPI application entry point for Falcons.

Run with:  python main.py
           uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one log line per request with latency
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- enforces the per-IP budgets from api.limiter

Lifespan builds every collaborator a route needs and puts it on app.state
(stores, mailer, permission table). Routes reach them via
request.app.state; nothing is a module-level global, so tests swap the whole
set by replacing app.router.lifespan_context.
"""

from __future__ import annotations

import logging
import math
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.courses import router as courses_router
from api.routes.v1.users import router as users_router
from auth.permissions import load_permission_table
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError
from courses.store import CourseStore
from mail.sender import build_email_sender

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("falcons.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build and tear down the application collaborators.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, once uvicorn has drained in-flight requests.

    Startup order:
      1. Permission table -- a malformed file should stop startup before any
         database is opened.
      2. Stores -- both create their tables on first use of the database URL.
      3. Mailer -- no dependencies.
    """
    s = get_settings()
    logger.info("Falcons API starting up (debug=%s)", s.debug)
    app.state.permissions = load_permission_table(s.permissions_file)
    app.state.user_store = UserStore()
    app.state.course_store = CourseStore()
    app.state.mailer = build_email_sender(s)
    logger.info("Stores and mailer (%s) initialized", type(app.state.mailer).__name__)

    yield

    app.state.course_store.close()
    app.state.user_store.close()
    logger.info("Falcons API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Falcons API",
    description="Accounts, course catalog, enrollment and progress tracking.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware so the LAST one added is the OUTERMOST. Add in
# reverse of the order a request should meet them: SlowAPI, CORS, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(courses_router, prefix="/api/v1", tags=["Courses"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: ErrorDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Operational errors carry their own status, code and user-facing message."""
    field_errors = getattr(exc, "errors", None)
    if exc.status_code >= 500:
        logger.error("Operational error on %s %s: %s", request.method, request.url.path, exc.message)
    return _error_response(
        exc.status_code,
        ErrorDetail(
            code=exc.code,
            message=exc.message,
            errors=[FieldError(**e) for e in field_errors] if field_errors else None,
        ),
    )


def _retry_after(request: Request) -> int:
    """Seconds until the limit that was hit frees a slot.

    slowapi leaves (limit, key) on request.state.view_rate_limit. Under the
    moving window that is the earliest counted hit plus the window length.
    """
    view_limit = getattr(request.state, "view_rate_limit", None)
    if view_limit is None:
        return 60
    item, key = view_limit
    reset_at, _ = limiter.limiter.get_window_stats(item, *key)
    return max(1, math.ceil(reset_at - time.time()))


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a slowapi budget is spent (blanket or credential endpoints).

    Synchronous: SlowAPIMiddleware falls back to its own plain-text handler
    when the registered one is a coroutine.
    """
    message = exc.detail if exc.limit is not None and exc.limit.error_message else "Too many requests."
    return _error_response(
        429,
        ErrorDetail(code="rate_limited", message=message),
        headers={"Retry-After": str(_retry_after(request))},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint.

    The field name is the last element of pydantic's location tuple
    (("body", "email") -> "email").
    """
    field_errors = [
        FieldError(field=str(err["loc"][-1]) if err.get("loc") else "request", message=err["msg"])
        for err in exc.errors()
    ]
    return _error_response(
        400,
        ErrorDetail(code="validation_error", message="Invalid input data", errors=field_errors),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) in the same envelope."""
    if exc.status_code == 404:
        message = f"Can't find {request.url.path} on this server"
    else:
        message = str(exc.detail)
    return _error_response(
        exc.status_code,
        ErrorDetail(code=f"http_{exc.status_code}", message=message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for programming errors.

    The full traceback always goes to the log. The client gets a generic
    message in production; with DEBUG on, the exception text and stack are
    added to the envelope.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = stack = None
    if get_settings().debug:
        detail = f"{type(exc).__name__}: {exc}"
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _error_response(
        500,
        ErrorDetail(code="internal_error", message="Something went wrong!", detail=detail, stack=stack),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check: database ping failed")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})
