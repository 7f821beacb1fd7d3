"""
Mutable run statistics, sealed into an immutable RunStats at the end of a run
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models.base import MergeMode, PipelineState
from schemas.pipeline import BatchCommitResult, ErrorInfo, RunStats, StageStats, StageTimings


@dataclass
class StageCounter:
    total: int = 0
    success: int = 0
    failure: int = 0

    def record_success(self, count: int = 1) -> None:
        self.total += count
        self.success += count

    def record_failure(self, count: int = 1) -> None:
        self.total += count
        self.failure += count

    def freeze(self) -> StageStats:
        return StageStats(total=self.total, success=self.success, failure=self.failure)


@dataclass
class RunStatsAccumulator:
    """Owned by the orchestrator task; nothing else mutates it"""

    pipeline: str
    run_id: uuid.UUID = field(default_factory=uuid.uuid4)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    mode: Optional[MergeMode] = None
    dry_run: bool = False

    extraction: StageCounter = field(default_factory=StageCounter)
    transformation: StageCounter = field(default_factory=StageCounter)
    load: StageCounter = field(default_factory=StageCounter)

    warning_messages: List[str] = field(default_factory=list)
    skipped: int = 0
    destinations: Dict[str, BatchCommitResult] = field(default_factory=dict)
    timings_ms: Dict[PipelineState, float] = field(default_factory=dict)

    def add_warning(self, message: str) -> None:
        self.warning_messages.append(message)

    def add_skipped(self, count: int = 1) -> None:
        self.skipped += count

    def record_commit(self, results: Dict[str, BatchCommitResult]) -> None:
        """Fold destination commit results into the load counters"""
        for name, result in results.items():
            self.destinations[name] = result
            self.load.total += result.attempted
            self.load.success += result.succeeded
            self.load.failure += result.failed

    def record_timing(self, state: PipelineState, elapsed_ms: float) -> None:
        self.timings_ms[state] = self.timings_ms.get(state, 0.0) + elapsed_ms

    def seal(
        self,
        state: PipelineState,
        error: Optional[ErrorInfo] = None,
        ended_at: Optional[datetime] = None,
    ) -> RunStats:
        return RunStats(
            run_id=self.run_id,
            pipeline=self.pipeline,
            state=state,
            mode=self.mode,
            dry_run=self.dry_run,
            extraction=self.extraction.freeze(),
            transformation=self.transformation.freeze(),
            load=self.load.freeze(),
            warnings=len(self.warning_messages),
            warning_messages=list(self.warning_messages),
            skipped=self.skipped,
            destinations=dict(self.destinations),
            stage_timings=StageTimings(
                validation_ms=self.timings_ms.get(PipelineState.VALIDATING),
                extraction_ms=self.timings_ms.get(PipelineState.EXTRACTING),
                transformation_ms=self.timings_ms.get(PipelineState.TRANSFORMING),
                loading_ms=self.timings_ms.get(PipelineState.LOADING),
            ),
            started_at=self.started_at,
            ended_at=ended_at or datetime.now(timezone.utc),
            error=error,
        )
