"""
Unit tests for the pipeline orchestrator state machine
"""

import pytest
from pydantic import ValidationError as PydanticValidationError
from unittest.mock import AsyncMock, Mock

from core.config import settings
from core.exceptions import DataFormatError, PipelineFatalError
from ingestion.runner import PipelineOrchestrator
from models.base import MergeMode, PipelineState


class RecordingPipeline(PipelineOrchestrator):
    """Pipeline whose stages only record that they ran"""

    name = "recording"

    def __init__(self, options=None, fail_in=None, error=None, validation=None, **kwargs):
        super().__init__(options, **kwargs)
        self.ran = []
        self.fail_in = fail_in
        self.error = error or RuntimeError("boom")
        self.validation = validation or ([], [])

    def validate(self, config):
        return self.validation

    async def _stage(self, name):
        self.ran.append(name)
        if self.fail_in == name:
            raise self.error

    async def extract(self, config):
        await self._stage("extract")
        self.stats.extraction.record_success(2)

    async def transform(self, config):
        await self._stage("transform")
        self.stats.transformation.record_success(5)

    async def load(self, config):
        await self._stage("load")
        self.stats.load.record_success(3)


class TestPipelineOrchestrator:

    @pytest.mark.asyncio
    async def test_successful_run_walks_every_state(self):
        events = []
        pipeline = RecordingPipeline({"mode": "FULL"}, on_progress=events.append)

        stats = await pipeline.run()

        assert stats.state == PipelineState.FINALIZED
        assert stats.succeeded
        assert stats.mode == MergeMode.FULL
        assert pipeline.ran == ["extract", "transform", "load"]
        assert [e.state for e in events] == [
            PipelineState.VALIDATING,
            PipelineState.EXTRACTING,
            PipelineState.TRANSFORMING,
            PipelineState.LOADING,
            PipelineState.FINALIZED,
        ]
        assert [e.percent for e in events] == [0, 5, 60, 75, 100]
        assert (stats.extraction.total, stats.transformation.total, stats.load.total) == (2, 5, 3)
        assert stats.stage_timings.loading_ms is not None
        assert stats.error is None

    @pytest.mark.asyncio
    async def test_invalid_options_error_before_any_stage(self):
        pipeline = RecordingPipeline({"concurrency": 0, "date_start": "2023-01-01"})

        stats = await pipeline.run()

        assert stats.state == PipelineState.ERRORED
        assert pipeline.ran == []
        assert stats.error.error_type == "ValidationError"
        assert stats.error.stage == PipelineState.VALIDATING
        assert any("concurrency" in message for message in stats.error.context["errors"])
        assert stats.mode is None

    @pytest.mark.asyncio
    async def test_unknown_option_is_rejected(self):
        stats = await RecordingPipeline({"concurency": 2}).run()

        assert stats.state == PipelineState.ERRORED
        assert any("concurency" in message for message in stats.error.context["errors"])

    @pytest.mark.asyncio
    async def test_validation_hook_errors_and_warnings(self):
        pipeline = RecordingPipeline(validation=(["no destinations"], ["odd option"]))

        stats = await pipeline.run()

        assert stats.state == PipelineState.ERRORED
        assert stats.error.context["errors"] == ["no destinations"]
        assert stats.warning_messages == ["odd option"]
        assert pipeline.ran == []

    @pytest.mark.asyncio
    async def test_unexpected_stage_exception_is_wrapped(self):
        pipeline = RecordingPipeline(fail_in="transform", error=KeyError("descricao"))

        stats = await pipeline.run()

        assert stats.state == PipelineState.ERRORED
        assert pipeline.ran == ["extract", "transform"]
        assert stats.error.error_type == "PipelineFatalError"
        assert stats.error.stage == PipelineState.TRANSFORMING
        assert "KeyError" in stats.error.context["cause"]
        # counters gathered before the failure are kept
        assert stats.extraction.success == 2

    @pytest.mark.asyncio
    async def test_fatal_error_keeps_its_type(self):
        error = PipelineFatalError("source unavailable", context={"stage": "extracting"})
        pipeline = RecordingPipeline(fail_in="extract", error=error)

        stats = await pipeline.run()

        assert stats.error.message == "source unavailable"
        assert stats.error.stage == PipelineState.EXTRACTING

    @pytest.mark.asyncio
    async def test_dry_run_skips_loading(self):
        events = []
        pipeline = RecordingPipeline({"dry_run": True}, on_progress=events.append)

        stats = await pipeline.run()

        assert stats.state == PipelineState.FINALIZED
        assert stats.dry_run is True
        assert pipeline.ran == ["extract", "transform"]
        assert PipelineState.LOADING not in [e.state for e in events]
        assert any("Dry run" in message for message in stats.warning_messages)
        assert stats.stage_timings.loading_ms is None

    @pytest.mark.asyncio
    async def test_async_progress_handler_and_handler_errors(self):
        handler = AsyncMock(side_effect=[None, RuntimeError("socket closed"), None, None, None])

        stats = await RecordingPipeline(on_progress=handler).run()

        assert stats.state == PipelineState.FINALIZED
        assert handler.await_count == 5

    @pytest.mark.asyncio
    async def test_run_only_once(self):
        pipeline = RecordingPipeline()
        await pipeline.run()

        with pytest.raises(RuntimeError):
            await pipeline.run()

    @pytest.mark.asyncio
    async def test_stats_are_immutable(self):
        stats = await RecordingPipeline().run()

        with pytest.raises(PydanticValidationError):
            stats.skipped = 10

    @pytest.mark.asyncio
    async def test_out_of_range_settings_error_while_validating(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_RETRIES", 9)
        monkeypatch.setattr(settings, "ETL_CONCURRENCY", 500)
        pipeline = RecordingPipeline()

        stats = await pipeline.run()

        assert stats.state == PipelineState.ERRORED
        assert stats.error.stage == PipelineState.VALIDATING
        assert pipeline.ran == []
        errors = stats.error.context["errors"]
        assert any("max_retries" in message for message in errors)
        assert any("concurrency" in message for message in errors)

    @pytest.mark.asyncio
    async def test_bad_mode_setting_errors_instead_of_raising(self, monkeypatch):
        monkeypatch.setattr(settings, "ETL_MODE", "sideways")

        stats = await RecordingPipeline().run()

        assert stats.state == PipelineState.ERRORED
        assert stats.error.error_type == "ValidationError"
        assert any("mode" in message for message in stats.error.context["errors"])

    @pytest.mark.asyncio
    async def test_etl_error_from_validation_hook_is_wrapped(self):
        pipeline = RecordingPipeline()
        pipeline.validate = Mock(side_effect=DataFormatError("destination listing is malformed"))

        stats = await pipeline.run()

        assert stats.state == PipelineState.ERRORED
        assert stats.error.error_type == "ValidationError"
        assert stats.error.stage == PipelineState.VALIDATING
        assert stats.error.context["errors"] == ["destination listing is malformed"]
        assert "DataFormatError" in stats.error.context["cause"]
        assert pipeline.ran == []
