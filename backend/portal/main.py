"""Client Portal Backend - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.api import api_router
from portal.api.health import router as health_router
from portal.core import settings, setup_logging
from portal.core.logging import get_logger
from portal.core.timeutils import utc_now
from portal.middleware import AdminGateMiddleware

# Import all models to ensure they're registered with Base for Alembic
from portal.models import AdminUser, ClientCredential, PasswordResetToken  # noqa: F401
from portal.services.admin_session import get_admin_session_store
from portal.services.errors import CredentialStoreError

logger = get_logger("main")

_SESSION_CLEANUP_INTERVAL = 600  # Every 10 minutes


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


async def _admin_session_cleanup_loop() -> None:
    """Periodically remove expired admin sessions that were never read again."""
    store = get_admin_session_store()
    while True:
        await asyncio.sleep(_SESSION_CLEANUP_INTERVAL)
        try:
            removed = await store.cleanup_expired(utc_now())
            if removed > 0:
                logger.info(f"Cleaned up {removed} expired admin sessions")
        except Exception:
            logger.exception("Error cleaning up admin sessions")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if settings.is_production else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    cleanup_task = asyncio.create_task(_admin_session_cleanup_loop())
    cleanup_task.add_done_callback(task_done_callback)

    yield

    logger.info("Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass


async def credential_store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store failures are logged where they happen; callers only see a 500."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Client portal authentication and onboarding API",
        version=settings.app_version,
        lifespan=lifespan,
        # API docs are only served in debug mode
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_exception_handler(CredentialStoreError, credential_store_error_handler)

    # Redirects admin pages and admin API calls without a session cookie
    app.add_middleware(AdminGateMiddleware)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    # Include routers
    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
