"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from habitloop.achievements.router import router as achievements_router
from habitloop.config import get_settings
from habitloop.credits.router import router as credits_router
from habitloop.database import close_db, init_db
from habitloop.health.router import router as health_router
from habitloop.middleware import setup_middleware
from habitloop.predictions.router import internal_router as internal_polls_router
from habitloop.predictions.router import router as predictions_router
from habitloop.redis_client import close_redis, init_redis
from habitloop.streaks.router import router as streaks_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Habit Loop API",
        description="Daily prediction polls, visit streaks, achievements and credits",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(predictions_router)
    app.include_router(internal_polls_router)
    app.include_router(streaks_router)
    app.include_router(achievements_router)
    app.include_router(credits_router)

    return app


app = create_app()
