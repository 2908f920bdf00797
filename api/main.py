"""
api/main.py -- FastAPI application entry point for the rental auth service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (directory, mailer, identity provider, services)
and shutdown (drain the mail queue, close the DB engine) symmetrically.
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
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.kyc import router as kyc_router
from api.state import wire_services
from auth.errors import AuthenticationError, AuthError
from auth.oauth import GoogleIdentityProvider
from auth.store import SqlUserDirectory
from core.config import get_settings
from notify.mailer import SmtpMailer

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rentalauth.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service graph on startup and release it on shutdown.

    Startup order matters:
      1. Directory first -- every service depends on it.
      2. Mailer and identity provider -- leaf collaborators.
      3. wire_services() -- assembles the orchestrators on app.state.
    """
    logger.info("Rental auth API starting up")
    directory = SqlUserDirectory(_settings.database_url)
    mailer = SmtpMailer.from_settings(_settings)
    if not mailer.is_configured:
        logger.warning("SMTP_HOST not set -- outgoing mail will be logged, not sent")
    identity_provider = GoogleIdentityProvider() if _settings.google_client_id else None
    if identity_provider is None:
        logger.warning("GOOGLE_CLIENT_ID not set -- Google sign-in disabled")
    wire_services(app, _settings, directory=directory, mailer=mailer, identity_provider=identity_provider)
    logger.info("Auth services initialized")

    yield

    mailer.shutdown()
    directory.close()
    logger.info("Rental auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Rental Auth API",
    description="Authentication, secure tokens and KYC webhooks for the rental marketplace.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
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
app.include_router(kyc_router, prefix="/api/v1", tags=["KYC"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves through _error_response() so clients see one envelope:
# {"error": {"code", "message", "detail"}}. Error bodies are never cached.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: object = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail or None))
    response = JSONResponse(status_code=status_code, content=body.model_dump())
    response.headers["Cache-Control"] = "no-store"
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth core's error taxonomy.

    exc.message is always safe to show; internal detail was logged where the
    error was raised.
    """
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return _error_response(exc.status_code, exc.code, exc.message, exc.detail, headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After. Repeated hits on login are the brute-force signal."""
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit hit on %s from %s (%s)", request.url.path, client, exc.detail)
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        "rate_limited",
        "Too many requests. Try again later.",
        {"limit": str(exc.detail)},
        {"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with a field -> message map.

    Input values are dropped from the detail; they may contain passwords.
    """
    fields = {".".join(str(p) for p in err.get("loc", ())): err.get("msg", "invalid") for err in exc.errors()}
    return _error_response(422, "validation_error", "Request validation failed.", fields)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (404 on unknown routes, 405, ...)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected failures: logged with traceback, answered with a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and directory reachability."""
    directory = getattr(request.app.state, "directory", None)
    db_ok = bool(directory is not None and directory.ping())
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
