"""
Error classification and exponential backoff with jitter.

Classification order:
1. Status code (404, 400, 401, 403 are fatal; 408, 429 and 5xx are retryable)
2. Marker classes (NonRetryableError is fatal, RetryableError is retryable)
3. Transport errors (connection reset/refused, timeouts) are retryable
4. Anything else is retryable
"""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from core.config import settings
from core.exceptions import NonRetryableError, RateLimitError, RetryableError

logger = logging.getLogger(__name__)

FATAL_STATUS_CODES = frozenset({400, 401, 403, 404})
RETRYABLE_STATUS_CODES = frozenset({408, 429})

TRANSPORT_ERRORS = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


class ErrorClass(str, enum.Enum):
    FATAL = "fatal"
    RETRYABLE = "retryable"


def extract_status_code(error: BaseException) -> Optional[int]:
    """Read a status code from the error itself or from an attached response"""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify(error: BaseException) -> ErrorClass:
    """Decide whether an error is worth another attempt"""
    status = extract_status_code(error)
    if status is not None:
        if status in FATAL_STATUS_CODES:
            return ErrorClass.FATAL
        if status in RETRYABLE_STATUS_CODES or 500 <= status <= 599:
            return ErrorClass.RETRYABLE

    if isinstance(error, NonRetryableError):
        return ErrorClass.FATAL
    if isinstance(error, RetryableError):
        return ErrorClass.RETRYABLE
    if isinstance(error, TRANSPORT_ERRORS):
        return ErrorClass.RETRYABLE

    return ErrorClass.RETRYABLE


def delay_for(
    attempt: int,
    base: float = 0.5,
    maximum: float = 4.0,
    jitter_fraction: float = 0.1,
    multiplier: float = 2.0,
    rng: Any = random,
) -> float:
    """
    Delay in seconds before the attempt following `attempt` (1-based).

    min(base * multiplier ** (attempt - 1), maximum), widened by
    +/- jitter_fraction of itself and floored at zero.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    delay = min(base * (multiplier ** (attempt - 1)), maximum)
    if jitter_fraction:
        delay += delay * jitter_fraction * rng.uniform(-1.0, 1.0)
    return max(delay, 0.0)


@dataclass(frozen=True)
class BackoffPolicy:
    """Backoff parameters in seconds, plus the random source used for jitter"""

    base_delay: float = 0.5
    max_delay: float = 4.0
    jitter: float = 0.1
    multiplier: float = 2.0
    rng: Any = field(default=random, compare=False, repr=False)

    def __post_init__(self):
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_settings(cls, rng: Any = random) -> "BackoffPolicy":
        return cls(
            base_delay=settings.RETRY_BASE_DELAY_MS / 1000,
            max_delay=settings.RETRY_MAX_DELAY_MS / 1000,
            jitter=settings.RETRY_JITTER,
            multiplier=settings.RETRY_MULTIPLIER,
            rng=rng,
        )

    def classify(self, error: BaseException) -> ErrorClass:
        return classify(error)

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Backoff delay; a rate limit's Retry-After wins when longer, up to max_delay"""
        delay = delay_for(
            attempt,
            base=self.base_delay,
            maximum=self.max_delay,
            jitter_fraction=self.jitter,
            multiplier=self.multiplier,
            rng=self.rng,
        )
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, min(float(error.retry_after), self.max_delay))
        return delay
