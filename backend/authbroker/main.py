"""FastAPI application entry point.

This module creates and configures the FastAPI application, including:
- Logging setup (structlog over stdlib logging)
- Security headers and HTTPS enforcement middleware
- Exception handlers for API errors
- Protocol collaborators on app.state (config, rate limiter, notifier)
- Health check endpoint
"""

import logging

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from authbroker.api.deps import DbSession
from authbroker.api.v1.router import router as v1_router
from authbroker.core.config import BrokerConfig, settings
from authbroker.core.database import async_session_factory, check_database
from authbroker.core.email import build_notifier
from authbroker.core.errors import APIError, ErrorCode
from authbroker.core.rate_limiting import (
    RateLimiter,
    build_rate_limit_backend,
    limiter,
    rate_limit_exceeded_handler,
)
from authbroker.core.responses import ErrorDetail, ErrorResponse
from authbroker.models.base import utcnow

logger = structlog.get_logger()

# Load balancer probes may reach the app over plain HTTP
_HTTPS_EXEMPT_PATHS = frozenset({"/healthz"})


def configure_logging(level: str) -> None:
    """Route structlog through stdlib logging at the configured level.

    Production emits JSON lines; development renders for the console.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logging.basicConfig(level=log_level, format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.environment == "production"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses.

    Headers added:
    - X-Frame-Options: Prevents clickjacking attacks
    - X-Content-Type-Options: Prevents MIME sniffing
    - Referrer-Policy: no-referrer (URLs carry one-time secrets)
    - Cache-Control: Prevents caching of tokens, codes and identities
    - Content-Security-Policy: No resource loading; the code form may only
      post back to this origin
    - Cross-Origin-Opener-Policy: Isolates browsing context (Spectre mitigation)
    - Strict-Transport-Security: Forces HTTPS (production only)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        # Clickjacking protection
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Magic-link and code-entry URLs must never leak via Referer
        response.headers["Referrer-Policy"] = "no-referrer"

        response.headers["Cache-Control"] = "no-store, max-age=0"

        # default-src 'none': responses load no resources
        # form-action 'self': the code entry form posts to /code
        # frame-ancestors 'none': Modern replacement for X-Frame-Options
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; form-action 'self'; frame-ancestors 'none'"
        )

        response.headers["Cross-Origin-Opener-Policy"] = "same-origin"

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


class HttpsRequiredMiddleware(BaseHTTPMiddleware):
    """Reject plain-HTTP requests in production.

    TLS terminates at the reverse proxy, so the scheme is read from
    X-Forwarded-Proto.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Return 400 unless the request arrived over HTTPS."""
        if (
            settings.environment == "production"
            and settings.require_https
            and request.url.path not in _HTTPS_EXEMPT_PATHS
        ):
            proto = request.headers.get("x-forwarded-proto", "")
            if proto.lower() != "https":
                return PlainTextResponse("HTTPS required", status_code=400)
        return await call_next(request)


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors.

    Returns the standard error envelope; extra headers on the error
    (Retry-After, CORS) are copied onto the response.

    Args:
        request: The incoming request.
        exc: The APIError that was raised.

    Returns:
        JSONResponse with error envelope and appropriate status code.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code.value,
                message=exc.message,
                details=exc.details,
            )
        ).model_dump(),
        headers=exc.headers or None,
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors from FastAPI.

    Converts FastAPI's validation errors to our standard format.

    Args:
        request: The incoming request.
        exc: The RequestValidationError from Pydantic.

    Returns:
        JSONResponse with validation_error code and field-level details.
    """
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code=ErrorCode.VALIDATION_ERROR.value,
                message="Request validation failed",
                details=[
                    {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ],
            )
        ).model_dump(),
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Returns 500 internal_error without exposing stack traces.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse with generic error message (500).
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code=ErrorCode.INTERNAL_ERROR.value,
                message="An unexpected error occurred",
            )
        ).model_dump(),
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Builds the protocol collaborators once from settings and stores them on
    ``app.state``; request handlers never read settings themselves.

    Returns:
        Configured FastAPI application instance.
    """
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Authbroker",
        version="1.0.0",
        description="Passwordless email sign-in broker for client applications",
    )

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # Security headers wrap HTTPS enforcement so its 400 carries them too.
    app.add_middleware(HttpsRequiredMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # Register exception handlers
    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Coarse per-IP guard on /magic
    app.state.limiter = limiter

    # Protocol collaborators
    app.state.broker_config = BrokerConfig.from_settings(settings)
    app.state.rate_limiter = RateLimiter(
        build_rate_limit_backend(settings, async_session_factory),
        enabled=settings.rate_limit_enabled,
    )
    app.state.notifier = build_notifier(settings)
    app.state.clock = utcnow

    app.include_router(v1_router)

    # Health check endpoint (outside versioned API)
    @app.get("/healthz")
    async def health_check(db: DbSession) -> dict:
        """Health check endpoint for monitoring.

        Returns:
            {"ok": true, "db": <bool>}; the service answers even when the
            database probe fails.
        """
        return {"ok": True, "db": await check_database(db)}

    return app


# Create the application instance
# Used by uvicorn: uvicorn authbroker.main:app
app = create_app()
