"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from erigga.admin.router import router as admin_router
from erigga.auth.router import router as auth_router
from erigga.config import get_settings, validate_settings
from erigga.database import close_db, init_db
from erigga.health.router import router as health_router
from erigga.ledger.router import router as ledger_router
from erigga.middleware import setup_middleware
from erigga.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    await init_db(settings.database_url, create_tables=settings.auto_create_tables)
    await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)
    logger.info("startup_complete", environment=settings.environment, session_store=settings.session_store)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Build the application. Raises ConfigurationError on unusable settings."""
    settings = get_settings()
    validate_settings(settings)

    app = FastAPI(
        title="Erigga API",
        description="Fan community backend: sessions, coin wallet and coin-backed votes",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(ledger_router)
    app.include_router(admin_router)

    return app
