"""
GymSync API Server

Entry point for the FastAPI application.
"""

from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gymsync.core.config import get_settings
from gymsync.core.database import async_session_factory
from gymsync.core.errors import AuthError, auth_error_handler
from gymsync.core.logging import configure_logging
from gymsync.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from gymsync.core.redis import close_redis
from gymsync.api.v1 import router as api_v1_router
from gymsync.api.v1.auth import router as auth_router
from gymsync.services.sessions import SessionStore
from gymsync.tasks.session_cleanup import SessionSweeper

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="GymSync",
        description="Multi-tenant gym management: authentication and active-gym context.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware: the last one added is the outermost
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    )

    app.add_exception_handler(AuthError, auth_error_handler)

    # Auth routes (not gym-scoped)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

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

    sweeper = SessionSweeper(
        SessionStore(
            async_session_factory,
            ttl=timedelta(minutes=settings.session_ttl_minutes),
            timeout=settings.store_timeout_seconds,
        ),
        interval=settings.session_purge_interval_seconds,
    )

    @app.on_event("startup")
    async def on_startup():
        log.info("gymsync.starting", session_ttl_minutes=settings.session_ttl_minutes)
        if settings.session_purge_interval_seconds > 0:
            await sweeper.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("gymsync.shutting_down")
        if sweeper.running:
            await sweeper.stop()
        await close_redis()

    return app


app = create_app()


def run() -> None:
    """CLI entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("gymsync.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
