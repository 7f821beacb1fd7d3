"""
Concurrency-limited dispatch of independent work items.

Items run in fixed-size chunks. Every item of a chunk runs concurrently and
the whole chunk settles before the next starts, with an optional pause in
between. A failing item never cancels its siblings.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from core.exceptions import DispatchCancelledError
from ingestion.types import DispatchProgress, FetchResult, PagedRecords, WorkItem

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DispatchProgress], Any]


class ConcurrencyLimitedDispatcher:
    def __init__(
        self,
        concurrency: int,
        inter_chunk_pause: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if inter_chunk_pause < 0:
            raise ValueError("inter_chunk_pause must be >= 0")
        self.concurrency = concurrency
        self.inter_chunk_pause = inter_chunk_pause
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def _run_item(self, item: WorkItem) -> FetchResult:
        try:
            result = await item.fetch()
        except Exception as e:
            self.logger.error(f"Work item {item.item_id} failed: {e}")
            return FetchResult(item_id=item.item_id, error=e)

        if isinstance(result, PagedRecords):
            return FetchResult(
                item_id=item.item_id,
                records=list(result.records),
                total_pages=result.total_pages,
                truncated=result.truncated,
            )
        return FetchResult(item_id=item.item_id, records=list(result or []))

    async def _notify(self, on_progress: Optional[ProgressCallback], progress: DispatchProgress):
        if on_progress is None:
            return
        try:
            outcome = on_progress(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.warning(f"Progress callback raised, ignoring: {e}")

    async def dispatch(
        self,
        items: Sequence[WorkItem],
        on_progress: Optional[ProgressCallback] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> List[FetchResult]:
        """
        Run all items and return one FetchResult per item, in input order.

        Args:
            items: Work items to run
            on_progress: Called after each chunk with DispatchProgress
            should_continue: Consulted before every chunk after the first;
                returning False marks the remaining items as cancelled

        Returns:
            Results correlated 1:1 with `items`
        """
        items = list(items)
        total = len(items)
        results: List[FetchResult] = []
        succeeded = 0

        for start in range(0, total, self.concurrency):
            if start > 0:
                if self.inter_chunk_pause:
                    await self.sleep(self.inter_chunk_pause)

                if should_continue is not None and not should_continue():
                    remaining = items[start:]
                    self.logger.warning(
                        f"Dispatch stopped after {start}/{total} items; "
                        f"{len(remaining)} items not attempted"
                    )
                    results.extend(
                        FetchResult(
                            item_id=item.item_id,
                            error=DispatchCancelledError(
                                "Dispatch stopped before this item was attempted",
                                context={"item_id": item.item_id},
                            ),
                        )
                        for item in remaining
                    )
                    break

            chunk = items[start:start + self.concurrency]
            chunk_results = await asyncio.gather(*(self._run_item(item) for item in chunk))
            results.extend(chunk_results)
            succeeded += sum(1 for r in chunk_results if r.ok)

            self.logger.info(
                f"Dispatched {len(results)}/{total} items ({succeeded} succeeded)"
            )
            await self._notify(
                on_progress,
                DispatchProgress(completed=len(results), total=total, succeeded=succeeded),
            )

        return results
