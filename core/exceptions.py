"""
Custom exceptions for the ETL engine with structured error context.

This module provides the exception hierarchy used throughout the engine.
Each exception carries context information for debugging and for the
error fields of run statistics.

Exception Hierarchy:
    ETLException (base)
    ├── ValidationError                      (run configuration, never retried)
    ├── ExtractionError
    │   ├── FetchError                       (carries status_code / endpoint)
    │   │   ├── FetchFatalError
    │   │   │   ├── BadRequestError          (400)
    │   │   │   ├── AuthenticationError      (401, 403)
    │   │   │   └── ResourceNotFoundError    (404)
    │   │   └── FetchRetryableError
    │   │       ├── RateLimitError           (429)
    │   │       ├── ServerError              (5xx)
    │   │       └── NetworkError             (transport, timeouts)
    │   └── DispatchCancelledError
    ├── TransformationError
    │   └── DataFormatError
    ├── LoadError
    │   ├── PersistenceBatchError
    │   └── InvalidDestinationKeyError
    ├── PipelineFatalError                   (aborts the run)
    └── RetryableError / NonRetryableError (markers)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (endpoint, destination, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception is not None:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        extra = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if extra:
            context_str = ", ".join(f"{k}={v}" for k, v in extra.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception is not None:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{self.original_exception}"
            )

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


# ============================================================================
# Retry Strategy Markers
# ============================================================================

class RetryableError(ETLException):
    """
    Marker for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Server errors (HTTP 5xx)
    """


class NonRetryableError(ETLException):
    """
    Marker for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Bad requests (HTTP 400)
    - Resource not found (HTTP 404)
    - Invalid configuration or data format
    """


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Raised when the run configuration is invalid.

    Context should include:
        - errors: List of validation messages
    """


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for data extraction failures."""


class FetchError(ExtractionError):
    """
    Raised by a fetch capability when a page request fails.

    Context includes:
        - status_code: HTTP-like status code (if applicable)
        - endpoint: The endpoint that failed
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        super().__init__(message, context=context, original_exception=original_exception)
        self.status_code = status_code
        self.endpoint = endpoint
        if status_code is not None:
            self.context["status_code"] = status_code
        if endpoint is not None:
            self.context["endpoint"] = endpoint


class FetchFatalError(NonRetryableError, FetchError):
    """Fetch failure that must not be retried (400/401/403/404 class)."""


class FetchRetryableError(RetryableError, FetchError):
    """Fetch failure that may succeed on a later attempt (429/5xx/transport)."""


class BadRequestError(FetchFatalError):
    """Bad request (HTTP 400), usually invalid parameters."""


class AuthenticationError(FetchFatalError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""


class ResourceNotFoundError(FetchFatalError):
    """Resource not found errors (HTTP 404) that should not be retried."""


class RateLimitError(FetchRetryableError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        **kwargs: Any
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class ServerError(FetchRetryableError):
    """Server side failures (HTTP 5xx)."""


class NetworkError(FetchRetryableError):
    """Network-related errors (connection reset/refused, timeouts)."""


class DispatchCancelledError(ExtractionError):
    """Work item was never attempted because dispatch was stopped between chunks."""


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Base exception for data transformation failures."""


class DataFormatError(NonRetryableError, TransformationError):
    """
    Raised when a record or page payload has an unusable shape.

    Context should include:
        - field_name: Name of the missing/invalid field (if applicable)
        - entity_id: Entity the record belongs to (if known)
    """


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for data loading failures."""


class PersistenceBatchError(LoadError):
    """
    Raised when a batch commit to one destination fails.

    Context should include:
        - destination: Name of the destination
        - batch_index: 0-based index of the batch
        - batch_size: Number of operations in the batch
    """


class InvalidDestinationKeyError(NonRetryableError, LoadError):
    """
    Raised when a destination key does not satisfy a destination's path rules.

    Context should include:
        - destination_key: The offending key
        - destination: Name of the destination
    """


# ============================================================================
# Pipeline Errors
# ============================================================================

class PipelineFatalError(ETLException):
    """
    Stage-level failure of the pipeline itself; the only error that aborts a run.

    Context should include:
        - stage: Pipeline state in which the failure happened
    """
