from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Boolean, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from datetime import datetime, timezone
import uuid
from models.base import Base, ETLStatus, PipelineState, MergeMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ETLRun(Base):
    """
    Tracks metadata for each pipeline execution.

    Purpose:
    - Audit trail of all runs (one row per sealed RunStats)
    - Per-stage counters and timings
    - Per-destination commit outcomes
    - Error tracking and debugging
    """
    __tablename__ = "etl_runs"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    run_id = Column(UUID(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Pipeline identification
    pipeline_name = Column(String(100), nullable=False, index=True)
    mode = Column(Enum(MergeMode), nullable=True)
    dry_run = Column(Boolean, default=False, nullable=False)

    # Outcome
    status = Column(Enum(ETLStatus), default=ETLStatus.PENDING, nullable=False, index=True)
    final_state = Column(Enum(PipelineState), nullable=False)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Stage counters
    extraction_total = Column(Integer, default=0)
    extraction_failed = Column(Integer, default=0)
    transformation_total = Column(Integer, default=0)
    transformation_failed = Column(Integer, default=0)
    load_total = Column(Integer, default=0)
    load_failed = Column(Integer, default=0)
    warnings = Column(Integer, default=0)
    skipped = Column(Integer, default=0)

    # Stage timings (milliseconds)
    extraction_ms = Column(Float, nullable=True)
    transformation_ms = Column(Float, nullable=True)
    loading_ms = Column(Float, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONB, nullable=True)

    # Per-destination BatchCommitResult snapshots and warning messages
    destinations = Column(JSONB, nullable=True)
    warning_messages = Column(JSONB, nullable=True)

    __table_args__ = (
        Index("idx_etl_run_pipeline_started", "pipeline_name", "started_at"),
        Index("idx_etl_run_status", "status", "started_at"),
    )
