"""
api/main.py -- FastAPI application entry point for the CRM auth service.

Exposes sign-up/sign-in, session lookup, profile update, sign-out, password
reset and license provisioning as JSON over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost, as a request meets them):
  1. log_requests           -- method, path, status, latency, client
  2. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  3. CORSMiddleware         -- adds CORS headers for allowed browser origins
  4. rate_limit_gate        -- sliding-window quota for RATE_LIMIT_PATH_PREFIX

Lifespan handles startup (stores, quota checker) and shutdown (dispose DB
engines) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import build_quota_checker, client_key
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.license import router as license_router
from auth.store import UserStore
from core.config import get_settings
from licensing.store import LicenseStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("crmauth.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The quota checker is created here, once, and handed to the gate
    through app.state -- it is process-wide state with an explicit lifetime,
    not an import-time singleton.
    """
    settings = get_settings()
    logger.info("CRM auth API starting up (environment=%s)", settings.environment)
    app.state.user_store = UserStore(settings.auth_database_url) if settings.auth_database_url else UserStore()
    app.state.license_store = (
        LicenseStore(settings.license_database_url) if settings.license_database_url else LicenseStore()
    )
    logger.info("Stores initialized")
    app.state.quota_checker = build_quota_checker(settings)

    yield

    app.state.user_store.close()
    app.state.license_store.close()
    logger.info("CRM auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CRM Auth API",
    description="Accounts, sessions, password reset and licenses for the CRM.",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(status_code: int, code: str, message: str, detail: str | None = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette makes the most recently registered middleware the outermost one.
# Registration below therefore runs innermost-first: gate, CORS, TrustedHost,
# then request logging wraps everything.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def rate_limit_gate(request: Request, call_next):
    """Reject clients over their sliding-window quota with 429.

    Only paths under RATE_LIMIT_PATH_PREFIX are counted. The client key is the
    first X-Forwarded-For hop (127.0.0.1 when absent). The body is never read
    on rejection. With no counter backend configured the checker is AllowAll
    and every request passes.
    """
    if request.url.path.startswith(_settings.rate_limit_path_prefix):
        checker = request.app.state.quota_checker
        key = client_key(request.headers.get("x-forwarded-for"))
        if not await checker.hit(key):
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            return _error_response(
                429,
                "rate_limited",
                "Too many requests.",
                headers={"Retry-After": str(checker.retry_after)},
            )
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.trusted_host_list,
)


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(license_router, prefix="/api", tags=["License"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly: {"error": {"code", "message", "detail"?}}.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the request body is missing, malformed or fails validation."""
    return _error_response(
        400,
        "validation_error",
        "Request validation failed.",
        detail=str(exc.errors()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a structured dict, use it directly as the error field.
    Unknown routes (Starlette's 404) arrive here with a plain string detail.
    Headers set on the exception (Cache-Control, WWW-Authenticate) are kept.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "Internal server error.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Lives outside RATE_LIMIT_PATH_PREFIX so load-balancer probes are never
# throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether both stores answer."""
    try:
        db_ok = request.app.state.user_store.ping() and request.app.state.license_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        db_ok = False
    return HealthResponse(
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
