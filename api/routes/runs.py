"""
Pipeline run history endpoint
"""

from typing import Optional
import logging
import time
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from ingestion.run_history import list_recent_runs
from schemas.api import APIResponse, ETLRunSummary, RunListResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Runs"])


@router.get("/runs", response_model=APIResponse[RunListResponse])
async def get_runs(
    request: Request,
    pipeline: Optional[str] = Query(None, description="Only runs of this pipeline"),
    limit: int = Query(20, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent pipeline runs, newest first"""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    logger.info(f"[{request_id}] GET /runs - pipeline={pipeline}, limit={limit}")

    runs = await list_recent_runs(db, pipeline=pipeline, limit=limit)

    return APIResponse[RunListResponse](
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        data=RunListResponse(
            total=len(runs),
            runs=[ETLRunSummary.model_validate(run) for run in runs]
        )
    )
