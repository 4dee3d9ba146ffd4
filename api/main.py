"""
api/main.py -- FastAPI application entry point for the CAS client.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one log line per request with latency
  2. SessionMiddleware  -- signed-cookie session carrying the CAS identity
  3. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the immutable CasConfig, the TicketValidator (one pooled HTTP
session for every ticket validation) and one AuthGate per NoAuthBehavior,
and closes the HTTP session on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from cas.config import behavior_from_settings, config_from_settings
from cas.gate import build_gates
from cas.validator import TicketValidator
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
logger = logging.getLogger("casclient.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the CAS objects once and share them read-only across requests.

    An invalid CAS_URL raises ConfigurationError here and the server refuses
    to start; every other bad CAS setting is logged and replaced by its
    default inside config_from_settings().
    """
    settings = get_settings()
    config = config_from_settings(settings)
    validator = TicketValidator(config, timeout=settings.cas_validate_timeout)
    app.state.cas_config = config
    app.state.cas_validator = validator
    app.state.cas_gates = build_gates(
        config,
        validator,
        url_to_403=settings.cas_url_to_403,
        url_to_404=settings.cas_url_to_404,
    )
    app.state.cas_default_behavior = behavior_from_settings(settings)
    logger.info(
        "CAS client ready (cas=%s, service=%s, protocol=%s, default behavior=%s)",
        config.base_url,
        config.service_url,
        config.protocol_version.value,
        app.state.cas_default_behavior.value,
    )

    yield

    validator.close()
    logger.info("CAS client shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CAS Client",
    description="Central Authentication Service single sign-on for FastAPI applications.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() inserts at the outermost position, so the last call wraps
# everything registered before it.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# The CAS identity and the pending post-login URL live in this session.
# same_site="lax" lets the cookie ride along on the top-level GET that the
# CAS server redirects back with; "strict" would drop it and lose the
# pending redirect.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

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
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
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

    The raw exception goes to the log only, never to the response body.
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
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the CAS client is configured."""
    cas_state = "ok" if getattr(request.app.state, "cas_config", None) is not None else "unconfigured"
    return HealthResponse(version=__version__, components={"app": "ok", "cas": cas_state})
