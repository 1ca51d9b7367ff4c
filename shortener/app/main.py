from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shortener.app.api import redirect_router, stats_router, urls_router
from shortener.app.core.config import Settings, settings
from shortener.app.core.logging import get_logger, setup_logging
from shortener.app.db import models  # noqa: F401 - import to register models
from shortener.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    make_session_maker,
)
from shortener.app.db.init_db import init_database, verify_connection
from shortener.app.exceptions import ConfigurationError, ShortenerException
from shortener.app.middleware.auth import is_authenticated
from shortener.app.middleware.rate_limit import RateLimitMiddleware
from shortener.app.middleware.request_id import RequestIdMiddleware
from shortener.app.services.jobs import build_scheduler
from shortener.app.services.rate_limiter import LimiterConfig, SlidingWindowLimiter
from shortener.app.services.stats import StatsAggregator
from shortener.app.services.storage import SQLStorage


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use instead of the module-level instance

    Returns:
        Configured FastAPI application instance
    """
    app_settings = app_settings or settings

    setup_logging(app_settings)
    logger = get_logger(__name__)

    limiter = SlidingWindowLimiter(LimiterConfig.from_settings(app_settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Validates configuration, prepares the database and starts the
        background jobs on startup; stops them and releases connections on
        shutdown.
        """
        if not (app_settings.http_auth_user and app_settings.http_auth_password):
            raise ConfigurationError(
                "HTTP_AUTH_USER and HTTP_AUTH_PASSWORD must be set"
            )

        engine = get_async_engine(app_settings.database_url)
        session_maker = make_session_maker(engine)
        storage = SQLStorage(session_maker, leaders_limit=app_settings.leaders_limit)
        aggregator = StatsAggregator(storage, limiter)
        # Raises ConfigurationError for an unknown time zone or bad cron pattern
        scheduler, analytics = build_scheduler(app_settings, limiter, storage, aggregator)

        if not await verify_connection(engine):
            logger.error("Database connection failed!")
            raise RuntimeError("Cannot connect to database")

        await init_database(drop_first=app_settings.reload_on_start, engine=engine)

        app.state.session_maker = session_maker
        app.state.scheduler = scheduler

        await analytics.seed()
        if app_settings.scheduler_enabled:
            try:
                await analytics()
            except Exception as e:
                logger.warning(f"Initial statistics snapshot failed: {e}")
            await scheduler.start()

        logger.info(
            "Application startup complete",
            extra={
                "location": app_settings.location,
                "rate_limit": app_settings.rate_limit,
                "rate_buffer": app_settings.rate_buffer,
                "scheduler_enabled": app_settings.scheduler_enabled,
            }
        )

        yield

        await scheduler.stop()
        await close_async_engine(app_settings.database_url)

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="URL Shortener",
        description="URL shortener with global rate limiting and usage analytics",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = app_settings
    app.state.rate_limiter = limiter

    # Add middleware (order matters: last added = first executed).
    # Admission runs after authentication so rejected callers are never counted.
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        count_failed_requests=app_settings.rate_limit_count_failed_requests,
        authenticate=is_authenticated,
    )

    # Request ID middleware (outermost so denials are logged with an id)
    app.add_middleware(RequestIdMiddleware)

    # Include routers; the catch-all redirect goes last
    app.include_router(urls_router)
    app.include_router(stats_router)
    app.include_router(redirect_router)

    @app.exception_handler(ShortenerException)
    async def shortener_exception_handler(request: Request, exc: ShortenerException) -> JSONResponse:
        """Map application errors to their HTTP status code."""
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__}: {exc.message}",
                extra={"request_id": getattr(request.state, "request_id", None)},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            }
        )

        if app_settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                }
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            }
        )

    return app


# Create the application instance
app = create_app()
