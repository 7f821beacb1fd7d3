"""
Unit tests for run history records
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from ingestion.run_history import build_run_record, derive_status, record_run
from models.base import ETLStatus, MergeMode, PipelineState
from schemas.pipeline import BatchCommitResult, ErrorInfo, RunStats, StageStats


def make_stats(**overrides):
    started = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    values = {
        "run_id": uuid.uuid4(),
        "pipeline": "eventos",
        "state": PipelineState.FINALIZED,
        "mode": MergeMode.INCREMENTAL,
        "started_at": started,
        "ended_at": started + timedelta(seconds=3),
    }
    values.update(overrides)
    return RunStats(**values)


class TestDeriveStatus:

    def test_clean_run(self):
        assert derive_status(make_stats()) == ETLStatus.SUCCESS

    def test_errored_run(self):
        assert derive_status(make_stats(state=PipelineState.ERRORED)) == ETLStatus.FAILED

    @pytest.mark.parametrize("overrides", [
        {"extraction": StageStats(total=3, success=2, failure=1)},
        {"transformation": StageStats(total=3, success=2, failure=1)},
        {"load": StageStats(total=4, success=2, failure=2)},
        {"skipped": 1},
    ])
    def test_partial_runs(self, overrides):
        assert derive_status(make_stats(**overrides)) == ETLStatus.PARTIAL


class TestBuildRunRecord:

    def test_counters_and_destinations(self):
        stats = make_stats(
            extraction=StageStats(total=5, success=4, failure=1),
            load=StageStats(total=6, success=6, failure=0),
            destinations={"local_files": BatchCommitResult(destination="local_files", attempted=6, succeeded=6, batches=1)},
            warning_messages=["Entity 7: page cap of 100 reached, records truncated"],
            warnings=1,
        )

        run = build_run_record(stats)

        assert run.run_id == stats.run_id
        assert run.status == ETLStatus.PARTIAL
        assert run.final_state == PipelineState.FINALIZED
        assert run.duration_seconds == 3
        assert (run.extraction_total, run.extraction_failed) == (5, 1)
        assert run.destinations["local_files"]["succeeded"] == 6
        assert run.warning_messages == stats.warning_messages
        assert run.error_message is None

    def test_errored_run_keeps_error(self):
        error = ErrorInfo(
            error_type="ValidationError",
            message="Invalid run options",
            stage=PipelineState.VALIDATING,
            context={"errors": ["concurrency: Input should be greater than or equal to 1"]},
        )

        run = build_run_record(make_stats(state=PipelineState.ERRORED, mode=None, error=error))

        assert run.status == ETLStatus.FAILED
        assert run.mode is None
        assert run.error_message == "Invalid run options"
        assert run.error_details["stage"] == "validating"
        assert run.destinations is None


@pytest.mark.asyncio
async def test_record_run_adds_and_commits():
    session = AsyncMock()
    session.add = MagicMock()
    stats = make_stats()

    run = await record_run(session, stats)

    session.add.assert_called_once_with(run)
    session.commit.assert_awaited_once()
    assert run.pipeline_name == "eventos"
