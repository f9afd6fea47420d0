"""FastAPI application factory.

Creates and configures the FastAPI app:
  - Includes route routers (imports, reports)
  - Initializes the database on startup via lifespan context manager
  - run() serves it with uvicorn (the `postflow` console script)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from postflow.config import settings
from postflow.database import init_db
from postflow.routes.imports import router as imports_router
from postflow.routes.reports import router as reports_router

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: initialize database on startup."""
    logger.info("Starting postflow on port %s", settings.app_port)
    import postflow.database as db_module
    init_db(db_module.engine)
    if settings.strict_parsing:
        logger.info("Strict parsing enabled: fallbacks are reported as row errors.")
    yield
    logger.info("Shutting down postflow.")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="postflow",
        description="Content approval and analytics import service for social media agencies.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.include_router(reports_router)
    application.include_router(imports_router)

    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured port."""
    import uvicorn

    uvicorn.run("postflow.main:app", host="0.0.0.0", port=settings.app_port, log_level=settings.log_level)
