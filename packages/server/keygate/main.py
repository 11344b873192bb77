"""
Keygate API Server

Entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from keygate.api.v1 import build_router
from keygate.core.config import Settings, get_settings
from keygate.core.errors import register_exception_handlers
from keygate.core.logging import configure_logging
from keygate.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from keygate.core.redis import close_redis

log = structlog.get_logger()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "keygate.starting",
            environment=settings.environment,
            google_oauth=settings.google_oauth_enabled,
            smtp=settings.smtp_enabled,
        )
        if not settings.google_oauth_enabled:
            log.warning("keygate.google_oauth_disabled")
        yield
        log.info("keygate.shutting_down")
        await close_redis()

    app = FastAPI(
        title="Keygate",
        description="Password, one-time code and Google sign-in authentication service.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    register_exception_handlers(app)
    app.include_router(build_router(settings), prefix="/api")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    return app


app = create_app()
