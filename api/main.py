"""
api/main.py -- FastAPI application entry point for SessionGate.

Exposes the auth subsystem over HTTP. Everything the handlers need is built
once in the lifespan and parked on app.state; handlers never construct
stores or read settings themselves.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one INFO line per request with latency
  4. assign_trace_id       -- X-Trace-ID in, request.state.trace_id, X-Trace-ID out

Rate limiting is not middleware: it runs as router-level dependencies
(api/limiter.py) so /api/v1/health stays unthrottled.

Lifespan handles startup (stores, services, purge task) and shutdown
(cancel purge task, close stores) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException

from api.limiter import RateLimitPolicy
from api.models import HealthResponse
from api.responses import failure
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from auth.email import LoggingEmailSender
from auth.errors import AuthError
from auth.service import AuthService, EmailSender, PasswordHasher
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import BcryptPasswordHasher, TokenIssuer
from cache.limiter import RateLimiter, make_storage
from cache.store import OTPStore, connect
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
logger = logging.getLogger("sessiongate.api")

# Seconds between sweeps of expired OTP codes.
PURGE_INTERVAL_SECONDS = 10 * 60


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def wire_state(
    app: FastAPI,
    settings: Settings,
    *,
    engine: Engine,
    otp_store: OTPStore,
    rate_limiter: RateLimiter,
    hasher: PasswordHasher | None = None,
    email_sender: EmailSender | None = None,
) -> None:
    """Build the service graph on top of ready-made stores and attach it to app.state.

    Shared by the real lifespan and the test fixtures, which pass their own
    engine, cache stores, hasher and email sender.
    """
    issuer = TokenIssuer(
        settings.secret_key,
        access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        refresh_ttl=timedelta(hours=settings.refresh_token_expire_hours),
    )
    if email_sender is None:
        email_sender = LoggingEmailSender(settings.app_name, settings.otp_expire_minutes)

    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.refresh_token_store = RefreshTokenStore(engine)
    app.state.otp_store = otp_store
    app.state.rate_limiter = rate_limiter
    app.state.token_issuer = issuer
    app.state.auth_service = AuthService(
        users=app.state.user_store,
        refresh_tokens=app.state.refresh_token_store,
        otps=otp_store,
        issuer=issuer,
        hasher=hasher if hasher is not None else BcryptPasswordHasher(),
        email_sender=email_sender,
        otp_length=settings.otp_length,
        otp_ttl_seconds=settings.otp_expire_minutes * 60,
    )
    app.state.global_limit = RateLimitPolicy(
        settings.rate_limit_requests_per_minute,
        settings.rate_limit_window_seconds,
    )
    app.state.login_limit = RateLimitPolicy(
        settings.login_rate_limit_requests_per_minute,
        settings.login_rate_limit_window_seconds,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired OTP codes periodically.

    Reads already treat expired rows as absent; this only keeps the cache
    file from growing. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            app.state.otp_store.purge_expired()
        except Exception:
            logger.warning("Cache purge failed", exc_info=True)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores, build the service graph, start the purge task; undo on shutdown.

    Settings are read here, once. A bad SECRET_KEY or an unreachable
    database fails startup rather than the first request.
    """
    settings = get_settings()
    logger.info("SessionGate API starting up")

    engine = make_engine(settings.database_url, timeout=settings.db_timeout_seconds)
    logger.info("Credential store initialized")
    otp_store = OTPStore(connect(settings.cache_path, timeout=settings.db_timeout_seconds))
    rate_limiter = RateLimiter(make_storage(settings.rate_limit_storage_uri))
    logger.info("Cache initialized")

    wire_state(app, settings, engine=engine, otp_store=otp_store, rate_limiter=rate_limiter)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    otp_store.close()
    engine.dispose()
    logger.info("SessionGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="SessionGate API",
    description="Registration, email OTP verification, JWT sessions and role-gated access.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the last one
# added is the outermost. @app.middleware functions are added first so they
# sit inside CORS and TrustedHost.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def assign_trace_id(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-ID") or str(uuid.uuid4())
    request.state.trace_id = trace_id
    response = await call_next(request)
    response.headers["X-Trace-ID"] = trace_id
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s trace=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        getattr(request.state, "trace_id", "-"),
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Trace-ID"],
    expose_headers=["X-Trace-ID", "Retry-After"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same failure envelope so clients can parse errors
# uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any domain error with its own status code and stable code string.

    Rate-limit errors that carry retry_after also get a Retry-After header.
    """
    response = failure(request, exc.status_code, exc.code, exc.message)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        response.headers["Retry-After"] = str(int(retry_after))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return failure(
        request,
        422,
        "validation_error",
        "Request validation failed.",
        detail=str(exc.errors()),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return failure(request, exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return failure(request, 500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it carries no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    components = {"app": "ok"}
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        components["database"] = "error"
    try:
        request.app.state.otp_store.exists("__health__")
        components["cache"] = "ok"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        components["cache"] = "error"
    try:
        components["rate_limiter"] = "ok" if request.app.state.rate_limiter.healthy() else "error"
    except Exception:
        logger.warning("Health check: rate limiter storage unreachable", exc_info=True)
        components["rate_limiter"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
