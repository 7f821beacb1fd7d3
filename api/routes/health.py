"""
Health check endpoint with database and pipeline status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db
from ingestion.run_history import latest_run_per_pipeline
from models.base import ETLStatus
from schemas.api import HealthCheckResponse, PipelineHealth
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Last run outcome of every pipeline
    """

    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    pipelines = []
    failed = 0
    if db_connected:
        try:
            for run in await latest_run_per_pipeline(db):
                if run.status == ETLStatus.FAILED:
                    failed += 1
                pipelines.append(PipelineHealth(
                    pipeline_name=run.pipeline_name,
                    status=run.status,
                    last_run_at=run.started_at,
                    error_message=run.error_message
                ))
        except Exception as e:
            logger.error(f"Failed to fetch pipeline runs: {str(e)}")

    # overall status is derived by the response model
    return HealthCheckResponse(
        database_connected=db_connected,
        pipelines=pipelines,
        total_pipelines=len(pipelines),
        failed_pipelines=failed
    )
