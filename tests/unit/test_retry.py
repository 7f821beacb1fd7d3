"""
Unit tests for the retrying executor
"""

import asyncio
import logging

import pytest
from unittest.mock import AsyncMock

from core.exceptions import AuthenticationError, NetworkError, ResourceNotFoundError, ServerError
from ingestion.backoff import BackoffPolicy
from ingestion.retry import RetryingExecutor


@pytest.fixture
def executor(no_sleep):
    return RetryingExecutor(policy=BackoffPolicy(jitter=0), sleep=no_sleep)


class TestRetryingExecutor:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, executor, no_sleep):
        operation = AsyncMock(side_effect=[
            ServerError("unavailable", status_code=503),
            NetworkError("reset"),
            {"dados": []},
        ])

        result = await executor.execute(operation, max_attempts=4)

        assert result == {"dados": []}
        assert operation.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_budget_exhaustion_raises_last_error(self, executor, no_sleep):
        errors = [ServerError(f"attempt {i}", status_code=500) for i in range(1, 4)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(ServerError) as exc_info:
            await executor.execute(operation, max_attempts=3)

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ResourceNotFoundError("gone", status_code=404),
        AuthenticationError("denied", status_code=401),
    ])
    async def test_fatal_error_is_not_retried(self, executor, no_sleep, error):
        operation = AsyncMock(side_effect=error)

        with pytest.raises(type(error)):
            await executor.execute(operation, max_attempts=5)

        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self, executor, no_sleep):
        operation = AsyncMock(side_effect=ServerError("down", status_code=502))

        with pytest.raises(ServerError):
            await executor.execute(operation, max_attempts=1)

        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_budget(self, executor):
        with pytest.raises(ValueError):
            await executor.execute(AsyncMock(), max_attempts=0)

    @pytest.mark.asyncio
    async def test_one_log_line_per_failed_attempt(self, executor, caplog):
        caplog.set_level(logging.WARNING, logger="ingestion.retry")
        operation = AsyncMock(side_effect=[ServerError("down", status_code=500)] * 3)

        with pytest.raises(ServerError):
            await executor.execute(operation, max_attempts=3, context={"operation": "eventos page 1"})

        lines = [r for r in caplog.records if r.name == "ingestion.retry"]
        assert len(lines) == 3
        assert "attempt 1/3" in lines[0].getMessage()
        assert "retryable" in lines[0].getMessage()
        assert "retry budget exhausted" in lines[-1].getMessage()

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_network_error(self, no_sleep):
        executor = RetryingExecutor(policy=BackoffPolicy(jitter=0), timeout=0.01, sleep=no_sleep)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(NetworkError):
            await executor.execute(slow, max_attempts=2)

        assert no_sleep.await_count == 1
