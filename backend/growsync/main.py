"""
GrowSync Backend - FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires settings, services, middleware, exception handlers
       and routes; the module-level `app` is what uvicorn serves
       (uvicorn growsync.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────┐ ┌────────┐ ┌─────────┐ ┌──────────────┐ │
    │  │ Rate Limit │→│ Req ID │→│ Logging │→│ Sec. Headers │ │
    │  └────────────┘ └────────┘ └─────────┘ └──────────────┘ │
    │                                                          │
    │  Routes:                                                 │
    │  ┌───────────────┐ ┌─────────────┐ ┌────────────┐       │
    │  │ POST /analyze │ │ GET /health │ │ GET /ready │       │
    │  └───────────────┘ └─────────────┘ └────────────┘       │
    │                                                          │
    │  app.state: settings, services (store, limiter, ...)    │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging setup, configuration report (not fatal)
    Shutdown: close the shared Notion HTTP client
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from growsync import __version__
from growsync.config import Settings, settings as default_settings
from growsync.dependencies import build_services
from growsync.exceptions import (
    BadSignatureError,
    ConfigurationError,
    GrowSyncError,
    RateLimitExceededError,
    UnauthorizedError,
    ValidationError,
)
from growsync.middleware.logging import RequestLoggingMiddleware
from growsync.middleware.rate_limit import RateLimitMiddleware
from growsync.middleware.request_id import RequestIDMiddleware, request_id_var
from growsync.middleware.security_headers import SecurityHeadersMiddleware
from growsync.routes import analyze, health

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging on stdout.

    Format: 2024-01-15T12:00:00 [INFO] growsync.services.batch: message
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # One line per outbound call / access is noise at INFO.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings

    setup_logging(settings.log_level)
    logger.info("=" * 60)
    logger.info("GrowSync Backend %s starting up...", __version__)

    # Not fatal: /health must keep answering while the config is being fixed.
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("GrowSync Backend shutting down...")
    await app.state.services.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Handler hierarchy:
        UnauthorizedError / BadSignatureError → 401 {"error": "unauthorized" | "bad signature"}
        ValidationError                       → 400 {"error": <validation detail>}
        RateLimitExceededError                → 429
        ConfigurationError                    → 500
        GrowSyncError (base)                  → 500
        Exception (fallback)                  → 500

    Responses never carry stack traces or exception context beyond what is listed.
    """

    @app.exception_handler(UnauthorizedError)
    @app.exception_handler(BadSignatureError)
    async def handle_auth_error(request: Request, exc: GrowSyncError):
        rid = request_id_var.get("")
        logger.warning("[%s] Rejected request: %s", rid, exc.message)
        return JSONResponse(
            status_code=401,
            content={"error": exc.message, "request_id": rid},
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content={"error": exc.message, "request_id": rid},
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": exc.message,
                "details": {"retry_after": exc.retry_after},
                "request_id": rid,
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        rid = request_id_var.get("")
        logger.error("[%s] Configuration error: %s", rid, exc.message)
        return JSONResponse(
            status_code=500,
            content={
                "error": "configuration_error",
                "message": exc.message,
                "details": {"missing": exc.missing},
                "request_id": rid,
            },
        )

    @app.exception_handler(GrowSyncError)
    async def handle_growsync_error(request: Request, exc: GrowSyncError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:  Defaults to the process-wide settings loaded from the environment
        transport: httpx transport for the Notion client (tests use MockTransport)
    """
    settings = settings or default_settings

    app = FastAPI(
        title="GrowSync API",
        description=(
            "Signed webhook that analyzes grow photo batches and writes the results "
            "back to Notion, idempotently and within Notion's rate limits."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = build_services(settings, transport=transport)

    # Last added runs first: RateLimit → RequestID → Logging → SecurityHeaders.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window,
        bypass_token=settings.rate_limit_bypass_token,
    )

    register_exception_handlers(app)

    app.include_router(analyze.router)
    app.include_router(health.router)

    return app


app = create_app()
