"""
Persist sealed RunStats as ETLRun rows and query them back
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import ETLStatus, PipelineState
from models.etl_run import ETLRun
from schemas.pipeline import RunStats

logger = logging.getLogger(__name__)


def derive_status(stats: RunStats) -> ETLStatus:
    """FAILED if the run errored, PARTIAL if anything failed or was skipped"""
    if stats.state == PipelineState.ERRORED:
        return ETLStatus.FAILED
    if stats.has_failures or stats.skipped:
        return ETLStatus.PARTIAL
    return ETLStatus.SUCCESS


def build_run_record(stats: RunStats) -> ETLRun:
    """Map a sealed RunStats onto an (unsaved) ETLRun row"""
    error = stats.error
    return ETLRun(
        run_id=stats.run_id,
        pipeline_name=stats.pipeline,
        mode=stats.mode,
        dry_run=stats.dry_run,
        status=derive_status(stats),
        final_state=stats.state,
        started_at=stats.started_at,
        completed_at=stats.ended_at,
        duration_seconds=stats.duration_ms / 1000,
        extraction_total=stats.extraction.total,
        extraction_failed=stats.extraction.failure,
        transformation_total=stats.transformation.total,
        transformation_failed=stats.transformation.failure,
        load_total=stats.load.total,
        load_failed=stats.load.failure,
        warnings=stats.warnings,
        skipped=stats.skipped,
        extraction_ms=stats.stage_timings.extraction_ms,
        transformation_ms=stats.stage_timings.transformation_ms,
        loading_ms=stats.stage_timings.loading_ms,
        error_message=error.message if error else None,
        error_details=error.model_dump(mode="json") if error else None,
        destinations={
            name: result.model_dump(mode="json") for name, result in stats.destinations.items()
        } or None,
        warning_messages=list(stats.warning_messages) or None,
    )


async def record_run(session: AsyncSession, stats: RunStats) -> ETLRun:
    """Store one run; commits the session"""
    run = build_run_record(stats)
    session.add(run)
    await session.commit()
    logger.info(f"Recorded run {stats.run_id} of {stats.pipeline} as {run.status.value}")
    return run


async def list_recent_runs(
    session: AsyncSession,
    pipeline: Optional[str] = None,
    limit: int = 20,
) -> List[ETLRun]:
    """Most recent runs first, optionally for one pipeline"""
    query = select(ETLRun).order_by(ETLRun.started_at.desc()).limit(limit)
    if pipeline:
        query = query.where(ETLRun.pipeline_name == pipeline)
    result = await session.execute(query)
    return list(result.scalars().all())


async def latest_run_per_pipeline(session: AsyncSession) -> List[ETLRun]:
    """The last recorded run of every pipeline"""
    latest = (
        select(ETLRun.pipeline_name, func.max(ETLRun.started_at).label("last_started"))
        .group_by(ETLRun.pipeline_name)
        .subquery()
    )
    result = await session.execute(
        select(ETLRun)
        .join(
            latest,
            (ETLRun.pipeline_name == latest.c.pipeline_name)
            & (ETLRun.started_at == latest.c.last_started),
        )
        .order_by(ETLRun.pipeline_name)
    )
    return list(result.scalars().all())
