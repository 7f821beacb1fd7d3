# ============================================================================
# File: ingestion/runner.py
# Description: Staged pipeline orchestrator with a strict state machine
# ============================================================================
"""
Pipeline Orchestrator - runs Validate, Extract, Transform, Load.

This module provides the template every pipeline follows:
- Explicit states INITIATED → VALIDATING → EXTRACTING → TRANSFORMING →
  LOADING → FINALIZED, with ERRORED absorbing
- Validation of run options before any I/O
- Wrapping of unexpected stage failures into PipelineFatalError
- Sealed RunStats returned for every run, successful or not
- No retries at this level; retry lives in the fetch layer
"""

import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Mapping, MutableMapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ETLException, PipelineFatalError, ValidationError
from ingestion.stats import RunStatsAccumulator
from models.base import PipelineState
from schemas.pipeline import ErrorInfo, ProgressEvent, RunConfig, RunStats

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[ProgressEvent], Any]

_ALLOWED_TRANSITIONS = {
    PipelineState.INITIATED: {PipelineState.VALIDATING, PipelineState.ERRORED},
    PipelineState.VALIDATING: {PipelineState.EXTRACTING, PipelineState.ERRORED},
    PipelineState.EXTRACTING: {PipelineState.TRANSFORMING, PipelineState.ERRORED},
    PipelineState.TRANSFORMING: {
        PipelineState.LOADING,
        PipelineState.FINALIZED,  # dry run
        PipelineState.ERRORED,
    },
    PipelineState.LOADING: {PipelineState.FINALIZED, PipelineState.ERRORED},
    PipelineState.FINALIZED: set(),
    PipelineState.ERRORED: set(),
}


def _format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "options"
        messages.append(f"{location}: {item.get('msg')}")
    return messages


class PipelineOrchestrator(ABC):
    """
    Template for staged pipelines.

    Subclasses implement extract(), transform() and load(), and may override
    validate() to add checks of their own. Stages report through self.stats.

    Responsibilities:
    - Drive the state machine
    - Validate options into a RunConfig
    - Time every stage
    - Emit progress events
    - Seal and return RunStats
    """

    name: str = "pipeline"

    def __init__(
        self,
        options: Optional[Union[RunConfig, Mapping[str, Any]]] = None,
        *,
        name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        cache: Optional[MutableMapping[str, Any]] = None,
        on_progress: Optional[ProgressHandler] = None,
    ):
        self.options = options
        if name:
            self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.cache = cache if cache is not None else {}
        self.on_progress = on_progress

        self.config: Optional[RunConfig] = None
        self.stats = RunStatsAccumulator(pipeline=self.name)
        self._state = PipelineState.INITIATED

    @property
    def state(self) -> PipelineState:
        return self._state

    # --------------------------------------------------
    # Hooks
    # --------------------------------------------------

    def validate(self, config: RunConfig) -> Tuple[List[str], List[str]]:
        """
        Pipeline specific validation.

        Returns:
            (errors, warnings); any error aborts the run before I/O
        """
        return [], []

    @abstractmethod
    async def extract(self, config: RunConfig) -> None:
        pass

    @abstractmethod
    async def transform(self, config: RunConfig) -> None:
        pass

    @abstractmethod
    async def load(self, config: RunConfig) -> None:
        pass

    # --------------------------------------------------
    # Helpers for stages
    # --------------------------------------------------

    def warn(self, message: str) -> None:
        """Record a non-fatal issue in the run statistics"""
        self.logger.warning(f"[{self.name}] {message}")
        self.stats.add_warning(message)

    async def emit_progress(self, percent: int, message: str, details: Optional[dict] = None) -> None:
        if self.on_progress is None:
            return
        event = ProgressEvent(
            state=self._state,
            percent=max(0, min(100, percent)),
            message=message,
            details=details,
        )
        try:
            outcome = self.on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.warning(f"[{self.name}] Progress handler raised, ignoring: {e}")

    async def _transition(self, state: PipelineState, percent: int, message: str) -> None:
        if state not in _ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal transition {self._state.value} -> {state.value}")
        self.logger.debug(f"[{self.name}] {self._state.value} -> {state.value}")
        self._state = state
        await self.emit_progress(percent, message)

    # --------------------------------------------------
    # Stages
    # --------------------------------------------------

    def _validate_options(self) -> RunConfig:
        try:
            if isinstance(self.options, RunConfig):
                config = self.options
            else:
                config = RunConfig.model_validate(dict(self.options or {}))
        except PydanticValidationError as e:
            errors = _format_pydantic_errors(e)
            raise ValidationError(
                "Invalid run options",
                context={"errors": errors},
                original_exception=e,
            )

        try:
            errors, warnings = self.validate(config)
        except (ValidationError, PipelineFatalError):
            raise
        except ETLException as e:
            raise ValidationError(
                "Pipeline validation failed",
                context={"errors": [e.message]},
                original_exception=e,
            )
        except Exception as e:
            raise PipelineFatalError(
                "Unexpected error in pipeline validation",
                context={"stage": PipelineState.VALIDATING.value},
                original_exception=e,
            )
        for message in warnings:
            self.warn(message)
        if errors:
            raise ValidationError("Pipeline validation failed", context={"errors": list(errors)})
        return config

    async def _run_stage(self, state: PipelineState, stage: Callable, config: RunConfig) -> None:
        started = time.perf_counter()
        try:
            await stage(config)
        except PipelineFatalError:
            raise
        except Exception as e:
            raise PipelineFatalError(
                f"Unexpected error during {state.value}",
                context={"stage": state.value},
                original_exception=e,
            )
        finally:
            self.stats.record_timing(state, (time.perf_counter() - started) * 1000)

    async def run(self) -> RunStats:
        """
        Run the pipeline once.

        Never raises for validation or stage failures: the returned RunStats
        carries state ERRORED and the error instead.
        """
        if self._state != PipelineState.INITIATED:
            raise RuntimeError(f"Pipeline {self.name} has already run")

        self.logger.info(f"[{self.name}] Starting run {self.stats.run_id}")

        try:
            # --------------------------------------------------
            # VALIDATING
            # --------------------------------------------------
            await self._transition(PipelineState.VALIDATING, 0, "Validating run options")
            started = time.perf_counter()
            try:
                config = self._validate_options()
            finally:
                self.stats.record_timing(PipelineState.VALIDATING, (time.perf_counter() - started) * 1000)

            self.config = config
            self.stats.mode = config.mode
            self.stats.dry_run = config.dry_run

            # --------------------------------------------------
            # EXTRACTING
            # --------------------------------------------------
            await self._transition(PipelineState.EXTRACTING, 5, "Extracting records")
            await self._run_stage(PipelineState.EXTRACTING, self.extract, config)

            # --------------------------------------------------
            # TRANSFORMING
            # --------------------------------------------------
            await self._transition(PipelineState.TRANSFORMING, 60, "Transforming records")
            await self._run_stage(PipelineState.TRANSFORMING, self.transform, config)

            # --------------------------------------------------
            # LOADING
            # --------------------------------------------------
            if config.dry_run:
                self.warn("Dry run: loading skipped, nothing was persisted")
            else:
                await self._transition(PipelineState.LOADING, 75, "Persisting records")
                await self._run_stage(PipelineState.LOADING, self.load, config)

            await self._transition(PipelineState.FINALIZED, 100, "Run finished")
            stats = self.stats.seal(PipelineState.FINALIZED)
            self.logger.info(
                f"[{self.name}] Run finalized - "
                f"extracted {stats.extraction.success}/{stats.extraction.total}, "
                f"transformed {stats.transformation.success}/{stats.transformation.total}, "
                f"loaded {stats.load.success}/{stats.load.total}, "
                f"{stats.warnings} warnings, {stats.skipped} skipped"
            )
            return stats

        except (ValidationError, PipelineFatalError) as e:
            failed_in = self._state
            self.logger.error(
                f"[{self.name}] Run errored during {failed_in.value}: {e}",
                extra={"error_context": e.to_dict()},
            )
            await self._transition(PipelineState.ERRORED, 100, e.message)
            return self.stats.seal(PipelineState.ERRORED, error=self._error_info(e, failed_in))

    @staticmethod
    def _error_info(error: ETLException, stage: PipelineState) -> ErrorInfo:
        detail = error.to_dict()
        if error.original_exception is not None:
            detail["context"]["cause"] = f"{type(error.original_exception).__name__}: {error.original_exception}"
        return ErrorInfo(
            error_type=detail["error_type"],
            message=error.message,
            stage=stage,
            context=detail["context"],
        )
