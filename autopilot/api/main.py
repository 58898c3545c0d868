"""FastAPI application exposing the autopilot engines."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from autopilot import __version__
from autopilot.api.routes import controls, drain, entry, maintenance
from autopilot.api.state import get_component, reset_components
from autopilot.config.settings import get_settings
from autopilot.database.connection import get_session
from autopilot.monitoring.logger import setup_logging


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    environment: str
    database: bool
    redis: bool


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Starting autopilot API...")
    yield
    logger.info("Shutting down autopilot API...")
    reset_components()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Signal Autopilot API",
        description="Scoring, auto-entry and broker reconciliation for trade signals",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(drain.router, prefix="/api/ai/score", tags=["scoring"])
    app.include_router(entry.router, prefix="/api/auto-entry", tags=["auto-entry"])
    app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])
    app.include_router(controls.router, prefix="/api/controls", tags=["controls"])

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Signal Autopilot",
            "version": __version__,
            "status": "running",
            "environment": settings.environment,
        }

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check():
        """
        Health check endpoint for monitoring.

        Returns status of:
        - Database connection
        - Redis connection
        """
        db_healthy = True
        try:
            with get_session() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            db_healthy = False

        redis_healthy = True
        try:
            get_component("redis").ping()
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            redis_healthy = False

        return HealthResponse(
            status="healthy" if (db_healthy and redis_healthy) else "unhealthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            environment=settings.environment,
            database=db_healthy,
            redis=redis_healthy,
        )

    return app


app = create_app()
