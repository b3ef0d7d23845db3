"""
Crop Verification API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.errors import register_error_handlers
from app.core.http import close_http_client
from app.core.logging import configure_logging
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.api.v1 import router as api_v1_router

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Crop Verification",
        description="Crop ownership photo verification: farmer submissions, reviewer decisions.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (the last one added runs outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Content-Type", "X-API-Key", "X-Request-ID"],
    )

    register_error_handlers(app)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("Crop verification starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Crop verification shutting down")
        await close_http_client()

    return app


app = create_app()
