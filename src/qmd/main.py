"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

# Logging constants defined here (not in constants/) because logging.basicConfig()
# must run before any module imports that might create loggers.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from qmd.api.deps import get_settings, reset_instances  # noqa: E402
from qmd.api.routers import search  # noqa: E402
from qmd.config import ConfigError  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Ensures the data directory exists

    On shutdown:
    - Closes the database and vector store
    """
    try:
        settings = get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Data directory: {settings.data_dir}")
    except (ConfigError, OSError) as e:
        logger.error(f"Failed to load settings: {e}")

    logger.info("QMD search started")

    yield

    reset_instances()


app = FastAPI(
    title="QMD",
    description="Hybrid lexical and semantic search over markdown documents",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(search.router)
