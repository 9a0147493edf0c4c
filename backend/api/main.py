"""
CarrierSync API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("CarrierSync API starting up", version=settings.app_version)
    yield
    logger.info("CarrierSync API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Carrier invoice and tracking ingestion service",
    lifespan=lifespan,
)

# Import and register routers
from api.v1.routers import invoice_files, tracking_numbers

app.include_router(invoice_files.router)
app.include_router(tracking_numbers.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
