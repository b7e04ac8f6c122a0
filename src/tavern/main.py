"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tavern.achievements.router import router as achievements_router
from tavern.audit.router import router as audit_router
from tavern.campaigns.router import router as campaigns_router
from tavern.config import get_settings
from tavern.database import close_db, init_db
from tavern.health.router import router as health_router
from tavern.leaderboard.router import router as leaderboard_router
from tavern.middleware import setup_middleware
from tavern.redis_client import close_redis, init_redis
from tavern.users.router import router as users_router


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
        title="Tavern Tally API",
        description="Backend API for Tavern Tally: campaigns, sessions, achievements and leaderboards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(achievements_router)
    app.include_router(campaigns_router)
    app.include_router(leaderboard_router)
    app.include_router(audit_router)

    return app


app = create_app()
