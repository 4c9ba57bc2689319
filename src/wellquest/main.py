"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wellquest.config import Settings, get_settings
from wellquest.database import close_db, init_db
from wellquest.gamification.catalog import MissionCatalog, default_catalog
from wellquest.gamification.events import EventChannel, RedisEventForwarder
from wellquest.gamification.router import router as gamification_router
from wellquest.middleware import setup_middleware
from wellquest.ranking.router import router as ranking_router
from wellquest.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    await init_db(settings.database_url)

    unsubscribe = None
    if settings.redis_enabled:
        await init_redis(settings.redis_url)
        redis = get_redis()
        if redis is not None:
            # Forward award events to Redis pub/sub for out-of-process consumers
            unsubscribe = app.state.event_channel.subscribe(RedisEventForwarder(redis))
    else:
        logger.info("Redis disabled: ranking cache and event forwarding are off")

    yield

    if unsubscribe is not None:
        unsubscribe()
    await close_db()
    await close_redis()


def create_app(settings: Settings | None = None, catalog: MissionCatalog | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="WellQuest Gamification API",
        description="XP ledger, streaks, levels and rankings for the WellQuest daily challenges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.catalog = catalog or default_catalog()
    app.state.event_channel = EventChannel()

    setup_middleware(app, settings)
    app.include_router(gamification_router)
    app.include_router(ranking_router)

    return app


app = create_app()
