# backend/inkflow/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .database import Database
from .errors import register_error_handlers
from .ratelimit import FixedWindowRateLimiter
from .routes.v1 import (
    bookings as bookings_v1,
    cron as cron_v1,
    metrics as metrics_v1,
    slots as slots_v1,
    webhooks as webhooks_v1,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment}")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    owns_database = getattr(app.state, "database", None) is None
    if owns_database:
        app.state.database = Database(settings.database_url)
    app.state.database.create_all()

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")
    if owns_database:
        app.state.database.dispose()
        app.state.database = None


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Build the API application.

    ``database`` is used as-is when given (tests pass an in-memory one);
    otherwise the lifespan opens ``DATABASE_URL``.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    app.state.database = database
    app.state.rate_limiter = FixedWindowRateLimiter(settings.rate_limit_buckets)

    # Register unified error envelope handlers
    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "OPTIONS", "POST"],
        allow_headers=["*"],
    )

    # Create API v1 router
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(slots_v1.router)
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(webhooks_v1.router)
    api_v1.include_router(cron_v1.router)
    app.include_router(api_v1)

    # Prometheus exposition stays outside the versioned prefix
    app.include_router(metrics_v1.router)

    return app


app = create_app()
