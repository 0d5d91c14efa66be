"""
api/main.py -- FastAPI application entry point for Shelfguard.

Exposes the authentication core over HTTP: registration, login, refresh with
rotation, logout, and RBAC-protected read routes over the role catalog.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every component once at startup (settings are validated
first, so a bad secret or cost parameter aborts the process before it binds)
and disposes them in reverse order at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from auth.errors import AuthError
from auth.passwords import CredentialHasher
from auth.service import AuthService
from auth.sessions import RedisRefreshTokenStore
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shelfguard.api")

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- validation failures abort here.
      2. Hasher, token service, and stores -- each is independent.
      3. AuthService last -- it is wired from the components above.
    """
    # Startup
    settings = get_settings()
    logger.info("Shelfguard API starting up (environment=%s)", settings.environment)
    app.state.settings = settings
    app.state.user_store = UserStore(db_url=settings.database_url)
    app.state.hasher = CredentialHasher.from_settings(settings)
    app.state.tokens = TokenService(settings)
    app.state.sessions = RedisRefreshTokenStore.from_url(settings.redis_url)
    if not await app.state.sessions.ping():
        logger.warning("Refresh token store unreachable at startup -- login and refresh will fail until it is up")
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.hasher,
        app.state.tokens,
        app.state.sessions,
    )
    logger.info(
        "Auth initialized (access_ttl=%dm, refresh_ttl=%dd, argon2 m=%d t=%d p=%d)",
        settings.access_token_expire_minutes,
        settings.refresh_token_expire_days,
        settings.argon2_memory_cost,
        settings.argon2_time_cost,
        settings.argon2_parallelism,
    )

    yield

    # Shutdown
    await app.state.sessions.close()
    app.state.hasher.close()
    app.state.user_store.close()
    logger.info("Shelfguard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Shelfguard API",
    description="Authentication and role-based access control.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor. Every request passes through this coroutine before
# reaching any route handler. Tokens and bodies are never logged.
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
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError with its own status and code.

    InternalError messages stay in the server log; the client gets the
    class's generic default_message.
    """
    if exc.status_code >= 500:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        response = _error(exc.status_code, exc.code, type(exc).default_message)
    else:
        response = _error(exc.status_code, exc.code, exc.message, exc.detail)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the request body or params fail validation.

    Same status and code as ValidationFailed raised inside the service, so
    clients see one shape for every input error.
    """
    detail = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error(400, "validation_error", "Request validation failed.", detail)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Envelope for HTTP exceptions, including the router's own 404 and 405."""
    resp = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        resp.headers.update(exc.headers)
    return resp


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the server log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
