"""
Pydantic schemas for API request/response models
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.base import ETLStatus, MergeMode, PipelineState

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    request_id: str
    api_latency_ms: int
    data: T


# ============================================================================
# Run History Schemas
# ============================================================================

class ETLRunSummary(BaseModel):
    """One recorded pipeline run"""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    run_id: UUID
    pipeline_name: str
    mode: Optional[MergeMode] = None
    dry_run: bool
    status: ETLStatus
    final_state: PipelineState
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    extraction_total: int = 0
    extraction_failed: int = 0
    transformation_total: int = 0
    transformation_failed: int = 0
    load_total: int = 0
    load_failed: int = 0
    warnings: int = 0
    skipped: int = 0
    error_message: Optional[str] = None
    destinations: Optional[Dict[str, Any]] = None


class RunListResponse(BaseModel):
    total: int
    runs: List[ETLRunSummary] = Field(default_factory=list)


# ============================================================================
# Health Check Schemas
# ============================================================================

class PipelineHealth(BaseModel):
    """Last known outcome of one pipeline"""

    model_config = ConfigDict(use_enum_values=True)

    pipeline_name: str
    status: ETLStatus
    last_run_at: datetime
    error_message: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Health check response model"""

    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    database_connected: bool
    pipelines: List[PipelineHealth] = Field(default_factory=list)
    total_pipelines: int = 0
    failed_pipelines: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Derive overall health from database connectivity and last runs"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.total_pipelines == 0 or self.failed_pipelines == 0:
            self.status = "healthy"
        elif self.failed_pipelines < self.total_pipelines:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self
