"""
Pydantic schemas for run configuration and run statistics
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.config import settings
from models.base import MergeMode, PipelineState


class RunConfig(BaseModel):
    """
    Validated run configuration.

    Defaults come from the environment settings; hosts override individual
    options by passing a mapping to the orchestrator, which validates it
    while VALIDATING.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    # Dispatch
    concurrency: int = Field(default_factory=lambda: settings.ETL_CONCURRENCY, ge=1)
    inter_chunk_pause_ms: int = Field(default_factory=lambda: settings.ETL_INTER_CHUNK_PAUSE_MS, ge=0)

    # Retry / pagination
    max_retries: int = Field(default_factory=lambda: settings.MAX_RETRIES, ge=1, le=5)
    max_pages_per_fetch: int = Field(default_factory=lambda: settings.ETL_MAX_PAGES, ge=1)
    operation_timeout_s: Optional[float] = Field(default=None, gt=0)
    page_pause_ms: int = Field(default=0, ge=0)

    # Reconciliation
    mode: MergeMode = Field(default_factory=lambda: settings.ETL_MODE)
    dry_run: bool = False

    # Selection
    date_start: Optional[date] = None
    date_end: Optional[date] = None
    entity_ids: Optional[List[str]] = None
    entity_range: Optional[Tuple[int, int]] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("concurrency")
    @classmethod
    def check_concurrency_ceiling(cls, v: int) -> int:
        if v > settings.MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be <= {settings.MAX_CONCURRENCY}")
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("entity_ids", mode="before")
    @classmethod
    def clean_entity_ids(cls, v):
        """Accept a comma separated string or a list"""
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        ids = [str(i).strip() for i in v if str(i).strip()]
        if not ids:
            raise ValueError("entity_ids must not be empty when given")
        return ids

    @field_validator("entity_range", mode="before")
    @classmethod
    def parse_entity_range(cls, v):
        """Accept "start-end" (1-based, inclusive)"""
        if isinstance(v, str):
            parts = v.split("-")
            if len(parts) != 2:
                raise ValueError("entity_range must look like 'start-end'")
            try:
                return int(parts[0]), int(parts[1])
            except ValueError:
                raise ValueError("entity_range bounds must be integers")
        return v

    @field_validator("entity_range")
    @classmethod
    def check_entity_range(cls, v):
        if v is None:
            return v
        start, end = v
        if start < 1 or end < start:
            raise ValueError("entity_range must satisfy 1 <= start <= end")
        return v

    @model_validator(mode="after")
    def check_combinations(self):
        if (self.date_start is None) != (self.date_end is None):
            raise ValueError("date_start and date_end must be given together")
        if self.date_start and self.date_end and self.date_start > self.date_end:
            raise ValueError("date_start must not be after date_end")
        if self.entity_ids is not None and self.entity_range is not None:
            raise ValueError("entity_ids and entity_range are mutually exclusive")
        return self

    @property
    def inter_chunk_pause(self) -> float:
        return self.inter_chunk_pause_ms / 1000

    @property
    def page_pause(self) -> float:
        return self.page_pause_ms / 1000


class StageStats(BaseModel):
    """Per-stage counters; success + failure always equals total"""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, ge=0)
    success: int = Field(0, ge=0)
    failure: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_accounting(self):
        if self.success + self.failure != self.total:
            raise ValueError(
                f"success ({self.success}) + failure ({self.failure}) != total ({self.total})"
            )
        return self

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 1.0
        return self.success / self.total


class BatchCommitResult(BaseModel):
    """Outcome of flushing one destination's staged operations"""

    model_config = ConfigDict(frozen=True)

    destination: str
    attempted: int = Field(0, ge=0)
    succeeded: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    batches: int = Field(0, ge=0)
    failed_batches: int = Field(0, ge=0)
    elapsed_ms: float = Field(0.0, ge=0)
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_accounting(self):
        if self.succeeded + self.failed != self.attempted:
            raise ValueError(
                f"succeeded ({self.succeeded}) + failed ({self.failed}) != attempted ({self.attempted})"
            )
        return self

    @property
    def outcome(self) -> str:
        """One of: empty, succeeded, partial, failed"""
        if self.attempted == 0:
            return "empty"
        if self.failed == 0:
            return "succeeded"
        if self.succeeded == 0:
            return "failed"
        return "partial"


class StageTimings(BaseModel):
    model_config = ConfigDict(frozen=True)

    validation_ms: Optional[float] = None
    extraction_ms: Optional[float] = None
    transformation_ms: Optional[float] = None
    loading_ms: Optional[float] = None


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    error_type: str
    message: str
    stage: Optional[PipelineState] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class RunStats(BaseModel):
    """
    Sealed statistics of one pipeline run.

    This is the only object returned across the orchestrator boundary.
    It is immutable once built.
    """

    model_config = ConfigDict(frozen=True)

    run_id: UUID
    pipeline: str
    state: PipelineState
    mode: Optional[MergeMode] = None
    dry_run: bool = False

    extraction: StageStats = Field(default_factory=StageStats)
    transformation: StageStats = Field(default_factory=StageStats)
    load: StageStats = Field(default_factory=StageStats)

    warnings: int = Field(0, ge=0)
    warning_messages: List[str] = Field(default_factory=list)
    skipped: int = Field(0, ge=0)

    destinations: Dict[str, BatchCommitResult] = Field(default_factory=dict)
    stage_timings: StageTimings = Field(default_factory=StageTimings)

    started_at: datetime
    ended_at: datetime
    error: Optional[ErrorInfo] = None

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.FINALIZED

    @property
    def success_rate(self) -> float:
        """Share of work items extracted without error"""
        return self.extraction.success_rate

    @property
    def duration_ms(self) -> float:
        return (self.ended_at - self.started_at).total_seconds() * 1000

    @property
    def has_failures(self) -> bool:
        return bool(
            self.extraction.failure
            or self.transformation.failure
            or self.load.failure
        )


class ProgressEvent(BaseModel):
    """Advisory progress notification emitted by the orchestrator"""

    state: PipelineState
    percent: int = Field(..., ge=0, le=100)
    message: str
    details: Optional[Dict[str, Any]] = None
