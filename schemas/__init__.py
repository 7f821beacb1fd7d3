"""
Pydantic schemas for validation and serialization.

This package defines the data shapes that cross module boundaries:

Modules:
    pipeline: Run configuration, stage statistics, batch commit results,
              sealed run statistics and progress events
    api: Request/response models for the read-only run history API

Usage:
    from schemas.pipeline import RunConfig, RunStats, BatchCommitResult
    from schemas.api import HealthCheckResponse, RunListResponse

Example:
    # Validate host supplied options
    config = RunConfig.model_validate({"concurrency": 4, "mode": "full"})

    # Inspect a finished run
    if stats.has_failures:
        print(stats.extraction.failure, stats.load.failure)
"""

__all__ = [
    # Pipeline
    "RunConfig",
    "StageStats",
    "BatchCommitResult",
    "StageTimings",
    "ErrorInfo",
    "RunStats",
    "ProgressEvent",
    # API
    "APIResponse",
    "ETLRunSummary",
    "RunListResponse",
    "PipelineHealth",
    "HealthCheckResponse",
]
