from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class ETLStatus(str, enum.Enum):
    """ETL run status"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class PipelineState(str, enum.Enum):
    """Pipeline orchestrator states; ERRORED is absorbing"""
    INITIATED = "initiated"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    FINALIZED = "finalized"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.FINALIZED, PipelineState.ERRORED)


class MergeMode(str, enum.Enum):
    """Reconciliation policy for bucketed records"""
    FULL = "full"
    INCREMENTAL = "incremental"
