"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from api.routes import health, runs
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.logging import setup_logging
import logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ETL run history API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    yield
    logger.info("Shutting down ETL run history API")


app = FastAPI(
    title="Bucketed ETL API",
    description="Read-only view of pipeline run history and health",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(RequestContextMiddleware)

app.include_router(health.router)
app.include_router(runs.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Bucketed ETL API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "runs": "/runs"
        }
    }
