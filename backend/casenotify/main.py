"""
Main FastAPI application.

WHY: This is the entry point for the notification service. It configures
middleware, routes, exception handlers, the shared in-process state
(fallback cache, user directory) and the lifespan that starts and stops
the scheduler and the Redis connection.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from casenotify.api import email_config, notification_rules, notifications
from casenotify.core.config import settings
from casenotify.core.exception_handlers import (
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from casenotify.core.exceptions import AppException
from casenotify.core.redis_client import close_redis
from casenotify.db.session import create_tables
from casenotify.middleware import RequestContextMiddleware
from casenotify.services.directory import build_directory
from casenotify.services.fallback_cache import BoundedTTLCache
from casenotify.services.recipient_resolver import Directory
from casenotify.services.scheduler import (
    get_scheduler_status,
    shutdown_scheduler,
    start_scheduler,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await create_tables()
    if settings.ENABLE_SCHEDULER:
        await start_scheduler()
    try:
        yield
    finally:
        await shutdown_scheduler()
        await close_redis()


def create_app(directory: Optional[Directory] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        directory: User directory for role expansion. Defaults to the one
            configured by DIRECTORY_API_URL (see build_directory).

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Country-scoped email notification configuration and delivery",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # One instance per app so tests get fresh caches
    app.state.directory = directory if directory is not None else build_directory()
    app.state.fallback_cache = BoundedTTLCache(
        max_size=settings.FALLBACK_CACHE_MAX_SIZE,
        ttl_seconds=settings.FALLBACK_CACHE_TTL_SECONDS,
    )

    # Register exception handlers
    # WHY: Every error reaches the console in the same envelope, with
    # tokens and codes stripped from the details
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request id and client address for log correlation and audit entries
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness check; does not touch the database or mail providers."""
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    app.include_router(email_config.router, prefix="/api")
    app.include_router(notification_rules.router, prefix="/api")
    app.include_router(notifications.router, prefix="/api")

    return app


app = create_app()
