"""
FastAPI Application Factory.

This module provides a clean, configurable FastAPI application setup.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production (sessions live in process memory: one worker)
    uvicorn api.app:create_app --factory --host 0.0.0.0 --port 8080

    # Or use the convenience function
    from api.app import create_app
    app = create_app()
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware
from core.utils import utc_now
from feed.errors import (
    FeedError,
    FeedStateError,
    ItemNotFoundError,
    PageLoadError,
    QuotaExceededError,
)
from feed.store import RemoteStore
from services.session_manager import FeedSessionManager


logger = get_logger(__name__)

SESSION_SWEEP_INTERVAL_SECONDS = 60.0


async def _sweep_sessions(sessions: FeedSessionManager) -> None:
    while True:
        await asyncio.sleep(SESSION_SWEEP_INTERVAL_SECONDS)
        try:
            await sessions.clear_expired()
        except Exception as e:
            logger.warning("Session sweep failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs on startup:
    - Initialize logging
    - Connect the Supabase-backed store (unless one was injected)
    - Start the expired-session sweeper

    Runs on shutdown:
    - Close every live feed session
    """
    settings: Settings = app.state.settings

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting feed API",
        environment=settings.environment,
        port=settings.port,
    )

    if app.state.store is None:
        from config.database import get_supabase_client
        from feed.supabase_store import SupabaseStore

        client = await get_supabase_client(settings)
        app.state.store = SupabaseStore(client)

    sweeper = asyncio.ensure_future(_sweep_sessions(app.state.sessions))

    yield  # Application is running

    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await app.state.sessions.close_all()
    logger.info("Shutting down feed API")


def _register_error_handlers(app: FastAPI) -> None:
    """Translate feed errors into HTTP responses."""

    status_codes = (
        (ItemNotFoundError, 404),
        (FeedStateError, 409),
        (QuotaExceededError, 429),
        (PageLoadError, 503),
    )

    async def handle_feed_error(request: Request, exc: FeedError) -> JSONResponse:
        status_code = 500
        for error_type, code in status_codes:
            if isinstance(exc, error_type):
                status_code = code
                break
        logger.info(
            "Feed request rejected",
            path=request.url.path,
            status_code=status_code,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    app.add_exception_handler(FeedError, handle_feed_error)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RemoteStore] = None,
    sessions: Optional[FeedSessionManager] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to get_settings())
        store: Remote store to use (defaults to a SupabaseStore created on startup)
        sessions: Session registry (defaults to a fresh FeedSessionManager)
        clock: Time source shared by sessions and feed scoring

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Feed API",
        description="""
        Personalized feed ranking and delivery.

        ## Features

        - **Ranking**: Deterministic multi-factor scoring (engagement, freshness, diversity, personalization)
        - **Mixing**: Promoted content and discovery profiles woven into the post stream
        - **Live updates**: Realtime invalidation with adaptive polling fallback
        - **Optimistic actions**: Likes, shares and swipes with exact rollback

        ## Main Endpoints

        - `/api/feed/*` - Feed sessions

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Detailed health with dependency status
        - `/ready` - Kubernetes readiness probe
        - `/live` - Kubernetes liveness probe
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.clock = clock
    app.state.sessions = sessions or FeedSessionManager(
        ttl_seconds=settings.feed_session_ttl_seconds,
        clock=clock,
    )

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    _register_error_handlers(app)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.feed import router as feed_router
    app.include_router(feed_router)

    return app


def run() -> None:
    """Serve the feed API with uvicorn (one worker: sessions are in memory)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    run()
