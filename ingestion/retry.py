"""
Retrying executor: runs one operation under the backoff policy.

Fatal errors surface on the first attempt; retryable errors are retried
until the attempt budget is spent and then the last error is raised.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from core.exceptions import NetworkError
from ingestion.backoff import BackoffPolicy, ErrorClass

logger = logging.getLogger(__name__)


class RetryingExecutor:
    """
    Execute zero-argument coroutine functions with retry and backoff.

    Attributes:
        policy: Backoff policy used for classification and delays
        timeout: Optional per-attempt timeout in seconds
        sleep: Awaitable sleep function (injectable for tests)
    """

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.policy = policy or BackoffPolicy.from_settings()
        self.timeout = timeout
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def _attempt(self, operation: Callable[[], Awaitable[Any]], context: Dict[str, Any]) -> Any:
        if self.timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Operation timed out after {self.timeout}s",
                context={**context, "timeout": self.timeout},
                original_exception=e,
            )

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        max_attempts: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Run `operation` until it succeeds, fails fatally, or the budget is spent.

        Args:
            operation: Zero-argument coroutine function
            max_attempts: Total attempts allowed (1 means no retry)
            context: Extra fields for log lines (endpoint, entity, page, ...)

        Returns:
            Whatever the operation returns

        Raises:
            ValueError: If max_attempts < 1
            Exception: The fatal error, or the last retryable error
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        context = dict(context or {})
        label = context.get("operation", getattr(operation, "__name__", "operation"))

        attempt = 1
        while True:
            try:
                return await self._attempt(operation, context)
            except Exception as e:
                error_class = self.policy.classify(e)

                if error_class == ErrorClass.FATAL:
                    self.logger.error(
                        f"{label} failed (attempt {attempt}/{max_attempts}, {error_class.value}): "
                        f"{e}; not retrying"
                    )
                    raise

                if attempt >= max_attempts:
                    self.logger.error(
                        f"{label} failed (attempt {attempt}/{max_attempts}, {error_class.value}): "
                        f"{e}; retry budget exhausted"
                    )
                    raise

                delay = self.policy.delay_for(attempt, e)
                self.logger.warning(
                    f"{label} failed (attempt {attempt}/{max_attempts}, {error_class.value}): "
                    f"{e}; retrying in {delay:.2f}s"
                )
                await self.sleep(delay)
                attempt += 1
