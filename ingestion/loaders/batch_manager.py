"""
Batched, multi-destination persistence with partial-failure accounting
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from core.exceptions import ETLException
from ingestion.loaders.destination import Destination
from ingestion.types import WriteOperation
from schemas.pipeline import BatchCommitResult

logger = logging.getLogger(__name__)


class BatchPersistenceManager:
    """
    Stage write operations and flush them to every destination in batches.

    Ensures:
    - A batch never exceeds the destination's max_batch_size
    - A failed batch is counted in full and recorded, later batches still run
    - Destinations are independent; one failing never affects another
    - commit() leaves every queue empty
    """

    def __init__(
        self,
        destinations: Sequence[Destination],
        batch_pause: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        names = [d.name for d in destinations]
        if not names:
            raise ValueError("At least one destination is required")
        if len(set(names)) != len(names):
            raise ValueError(f"Destination names must be unique: {names}")
        if batch_pause < 0:
            raise ValueError("batch_pause must be >= 0")

        self.destinations: Dict[str, Destination] = {d.name: d for d in destinations}
        self.batch_pause = batch_pause
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self._queues: Dict[str, List[WriteOperation]] = {name: [] for name in names}

    def pending(self, destination: str) -> int:
        return len(self._queues[destination])

    def stage(self, op: WriteOperation, destinations: Optional[Iterable[str]] = None) -> None:
        """
        Queue an operation for all destinations, or for the named subset.

        Raises:
            ValueError: If a named destination is not registered
            InvalidDestinationKeyError: If any target rejects the key
        """
        targets = list(destinations) if destinations is not None else list(self.destinations)
        unknown = [name for name in targets if name not in self.destinations]
        if unknown:
            raise ValueError(f"Unknown destinations: {unknown}")

        # validate everywhere first so a rejected key is queued nowhere
        for name in targets:
            self.destinations[name].validate_key(op.destination_key)
        for name in targets:
            self._queues[name].append(op)

    async def _commit_destination(self, destination: Destination, operations: List[WriteOperation]) -> BatchCommitResult:
        started = time.perf_counter()
        size = max(1, destination.max_batch_size)
        batches = [operations[i:i + size] for i in range(0, len(operations), size)]

        succeeded = 0
        failed = 0
        failed_batches = 0
        errors: List[Dict[str, Any]] = []

        for index, batch in enumerate(batches):
            if index > 0 and self.batch_pause:
                await self.sleep(self.batch_pause)
            try:
                await destination.write_batch(batch)
                succeeded += len(batch)
            except Exception as e:
                failed += len(batch)
                failed_batches += 1
                detail = e.to_dict() if isinstance(e, ETLException) else {
                    "error_type": type(e).__name__,
                    "message": str(e),
                }
                errors.append({"batch_index": index, "batch_size": len(batch), **detail})
                self.logger.error(
                    f"{destination.name}: batch {index + 1}/{len(batches)} "
                    f"({len(batch)} operations) failed: {e}"
                )

        result = BatchCommitResult(
            destination=destination.name,
            attempted=len(operations),
            succeeded=succeeded,
            failed=failed,
            batches=len(batches),
            failed_batches=failed_batches,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            errors=errors,
        )
        self.logger.info(
            f"{destination.name}: committed {succeeded}/{len(operations)} operations "
            f"in {len(batches)} batches ({failed_batches} failed)"
        )
        return result

    async def commit(self) -> Dict[str, BatchCommitResult]:
        """Flush every destination's queue; returns one result per destination"""
        queues = self._queues
        self._queues = {name: [] for name in self.destinations}

        results: Dict[str, BatchCommitResult] = {}
        for name, destination in self.destinations.items():
            results[name] = await self._commit_destination(destination, queues[name])
        return results
