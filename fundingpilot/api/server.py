"""
FastAPI application server.
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config.schema import APIConfig, Config
from ..database.connection import DatabaseSessionManager
from ..engine.scheduler import Scheduler
from ..utils.logging import get_logger
from .routes import control_router, health_router, positions_router, status_router

logger = get_logger(__name__)


def create_app(
    config: Optional[Config] = None,
    scheduler: Optional[Scheduler] = None,
    db: Optional[DatabaseSessionManager] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration
        scheduler: Autopilot scheduler whose state the API reads and controls
        db: Database session manager, used by health checks

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "api_server_starting",
            engine_attached=scheduler is not None,
            database_attached=db is not None,
        )
        yield
        logger.info("api_server_stopping")

    app = FastAPI(
        title="Funding Pilot API",
        description="Status and control API for the funding-rate arbitrage autopilot",
        version=__version__,
        lifespan=lifespan,
    )

    # None until wired; engine routes answer 503 and health reports unhealthy
    app.state.config = config
    app.state.scheduler = scheduler
    app.state.db = db

    cors_origins = config.api.cors_origins if config else ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(status_router, prefix="/api", tags=["Status"])
    app.include_router(positions_router, prefix="/api/positions", tags=["Positions"])
    app.include_router(control_router, prefix="/api/control", tags=["Control"])

    @app.get("/")
    async def root():
        return {
            "name": "Funding Pilot API",
            "version": __version__,
            "docs": "/docs",
            "health": "/api/health",
            "status": "/api/status",
        }

    return app


async def run_server(
    app: FastAPI,
    config: Optional[APIConfig] = None,
) -> None:
    """
    Run the API server.

    Args:
        app: FastAPI application
        config: API configuration
    """
    host = config.host if config else "127.0.0.1"
    port = config.port if config else 8000

    logger.info("starting_uvicorn", host=host, port=port)

    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )

    server = uvicorn.Server(server_config)
    await server.serve()
