from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ingestor import __version__
from ingestor.core.config import get_settings
from ingestor.core.logging import configure_logging, request_id_middleware
from ingestor.db.base import dispose_engine
from ingestor.ingestion.router import router as ingestion_router
from ingestor.ingestion.router import shutdown_poller

logger = structlog.get_logger(__name__)

settings = get_settings()
configure_logging(settings.ENV, settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup and release the HTTP client and DB pool on shutdown."""
    logger.info(
        "app.startup",
        env=settings.ENV,
        provider=settings.PROVIDER_NAME,
        database_configured=bool(settings.DATABASE_URL),
    )
    yield
    await shutdown_poller()
    await dispose_engine()
    logger.info("app.shutdown")


app = FastAPI(title="Provider Transaction Ingestor", version=__version__, lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(ingestion_router)


@app.get("/")
def health_check():
    return {"status": "ok", "service": "provider-ingestor", "version": __version__}
