import uuid
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ingestion.scheduler import ETLScheduler
from models.base import PipelineState
from schemas.pipeline import RunStats


def make_stats():
    now = datetime.now(timezone.utc)
    return RunStats(run_id=uuid.uuid4(), pipeline="eventos", state=PipelineState.FINALIZED, started_at=now, ended_at=now)


def make_session_factory(session):
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


def test_scheduler_initialization():
    scheduler = ETLScheduler(session_factory=MagicMock(), interval_minutes=15)
    assert scheduler.scheduler is not None
    assert scheduler.interval_minutes == 15
    assert scheduler.pipelines == {}


@pytest.mark.asyncio
async def test_scheduler_job_execution():
    stats = make_stats()
    pipeline = MagicMock()
    pipeline.run = AsyncMock(return_value=stats)
    session = AsyncMock()

    scheduler = ETLScheduler(session_factory=make_session_factory(session))
    scheduler.register("eventos", lambda: pipeline)

    with patch("ingestion.scheduler.record_run", new_callable=AsyncMock) as mock_record:
        result = await scheduler.run_pipeline_job("eventos")

    assert result is stats
    pipeline.run.assert_awaited_once()
    mock_record.assert_awaited_once_with(session, stats)


@pytest.mark.asyncio
async def test_job_failure_is_logged_not_raised():
    pipeline = MagicMock()
    pipeline.run = AsyncMock(side_effect=RuntimeError("pipeline exploded"))

    scheduler = ETLScheduler(session_factory=MagicMock())
    scheduler.register("eventos", lambda: pipeline)

    with patch("ingestion.scheduler.record_run", new_callable=AsyncMock) as mock_record:
        assert await scheduler.run_pipeline_job("eventos") is None

    mock_record.assert_not_awaited()


@pytest.mark.asyncio
async def test_recording_failure_still_returns_stats():
    stats = make_stats()
    pipeline = MagicMock()
    pipeline.run = AsyncMock(return_value=stats)

    scheduler = ETLScheduler(session_factory=make_session_factory(AsyncMock()))
    scheduler.register("eventos", lambda: pipeline)

    with patch("ingestion.scheduler.record_run", AsyncMock(side_effect=OSError("db down"))):
        assert await scheduler.run_pipeline_job("eventos") is stats


@pytest.mark.asyncio
async def test_start_registers_one_job_per_pipeline():
    scheduler = ETLScheduler(session_factory=MagicMock(), interval_minutes=5)
    scheduler.register("eventos", MagicMock())
    scheduler.register("despesas", MagicMock())

    scheduler.start()
    try:
        job_ids = sorted(job.id for job in scheduler.scheduler.get_jobs())
        assert job_ids == ["etl_job_despesas", "etl_job_eventos"]
    finally:
        scheduler.stop()
