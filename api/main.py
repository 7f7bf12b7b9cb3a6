"""
api/main.py -- FastAPI application entry point for Airlock.

Exposes the email sign-in loop and the maintenance API over HTTP. The web UI
router is mounted separately by asgi.py.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, schema migration, component wiring) and
shutdown (engine dispose) symmetrically. A MigrationError or
ConfigurationError during startup propagates and the process does not serve.
"""

from __future__ import annotations

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
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, RateLimitedResponse
from api.routes.auth import router as auth_router
from api.routes.maintenance import router as maintenance_router
from auth.challenges import TokenIssuer, TokenVerifier
from auth.flow import EmailLoginFlow
from auth.store import ChallengeStore
from auth.tokens import CredentialIssuer
from core.config import Settings, get_settings
from core.errors import AirlockError, Internal, RateLimited, Unauthorized
from directory.store import UserStore
from mail.sender import Mailer, build_mailer
from storage.database import create_db_engine
from storage.migrator import SchemaMigrator

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("airlock.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_app_state(app: FastAPI, settings: Settings, engine: Engine, mailer: Mailer) -> None:
    """Build every component from settings and attach it to app.state.

    This is the only place Settings values flow into component constructors.
    The test lifespan in tests/conftest.py calls it with an in-memory engine
    and a MemoryMailer.
    """
    challenge_store = ChallengeStore(engine)
    user_store = UserStore(engine)
    credentials = CredentialIssuer(secret_key=settings.jwt_secret, issuer=settings.jwt_issuer)

    app.state.engine = engine
    app.state.user_store = user_store
    app.state.challenge_store = challenge_store
    app.state.credentials = credentials
    app.state.mailer = mailer
    app.state.login_flow = EmailLoginFlow(
        users=user_store,
        issuer=TokenIssuer(challenge_store, debounce_seconds=settings.email_auth_debounce),
        verifier=TokenVerifier(challenge_store, expiry_seconds=settings.email_auth_expiry),
        credentials=credentials,
        mailer=mailer,
        service_url=settings.service_url,
        email_auth_path=settings.email_auth_path,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- every store shares its connection pool.
      2. Migrator second -- the schema must be current before any store
         issues a query. This is the startup barrier.
      3. Components last -- built from Settings, attached to app.state.
    """
    settings = get_settings()
    logger.info("Airlock API starting up")
    engine = create_db_engine(settings.database_url)
    version = SchemaMigrator(engine).ensure()
    logger.info("Database ready (schema v%d)", version)
    wire_app_state(app, settings, engine, build_mailer(settings))
    logger.info("Auth initialized (mail backend=%s)", settings.mail_backend)

    yield

    # Shutdown
    engine.dispose()
    logger.info("Airlock API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Airlock API",
    description="Passwordless email sign-in. Issues 30-day bearer credentials.",
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
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. Query strings are not
# logged -- the verify link carries the email secret there.
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(maintenance_router, prefix="/api", tags=["Maintenance"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _rate_limited_response(message: str, retry_after: int, detail: str | None = None) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content=RateLimitedResponse(
            error=ErrorDetail(code="rate_limited", message=message, detail=detail),
            retry_after_seconds=retry_after,
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(AirlockError)
async def airlock_error_handler(request: Request, exc: AirlockError) -> JSONResponse:
    """Render a domain error.

    Security note: every Unauthorized subclass (NoChallenge, InvalidToken,
    TokenExpired, AccountSuspended) produces the same body. Only the log line
    names the specific class.
    """
    if isinstance(exc, RateLimited):
        logger.info("Debounced %s %s: %s", request.method, request.url.path, exc)
        return _rate_limited_response(exc.client_message(), exc.retry_after_seconds)

    if isinstance(exc, Internal):
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    elif isinstance(exc, Unauthorized):
        logger.info("Auth failure on %s %s: %s", request.method, request.url.path, type(exc).__name__)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.client_message()),
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 in the same shape as the per-user debounce.

    Retry-After is the length of the exceeded window in seconds.
    """
    limit = getattr(exc, "limit", None)
    retry_after = int(limit.limit.get_expiry()) if limit is not None else 60
    return _rate_limited_response("Too many requests.", retry_after, detail=str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=400,
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

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it -- str(dict) produces a Python repr, not JSON.
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

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
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
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
