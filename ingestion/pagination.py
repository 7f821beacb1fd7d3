"""
Paginated fetching on top of the retrying executor
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import settings
from ingestion.retry import RetryingExecutor
from ingestion.types import Page, PagedRecords

logger = logging.getLogger(__name__)

PageFetch = Callable[[Dict[str, Any], Optional[Any]], Awaitable[Page]]


class PaginatedFetcher:
    """
    Walk every page of a paginated resource.

    Each page is fetched through the executor, so a page exhausting its
    retry budget fails the whole call. Pagination stops when the source
    reports no next page or when max_pages pages have been read; stopping
    on the cap while more pages exist marks the result as truncated.
    """

    def __init__(
        self,
        executor: RetryingExecutor,
        max_attempts: Optional[int] = None,
        page_pause: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if page_pause < 0:
            raise ValueError("page_pause must be >= 0")
        self.executor = executor
        self.max_attempts = max_attempts or settings.MAX_RETRIES
        self.page_pause = page_pause
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def fetch_all(
        self,
        page_fetch: PageFetch,
        params: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> PagedRecords:
        """
        Fetch all pages in order.

        Args:
            page_fetch: Coroutine function called as page_fetch(params, cursor)
            params: Request parameters passed unchanged to every page call
            max_pages: Page cap; None means no cap
            context: Extra fields for log lines

        Returns:
            PagedRecords with records in page order
        """
        if max_pages is not None and max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")

        params = dict(params or {})
        context = dict(context or {})
        records: List[Dict[str, Any]] = []
        cursor: Optional[Any] = None
        pages = 0

        while True:
            page = await self.executor.execute(
                partial(page_fetch, params, cursor),
                self.max_attempts,
                context={**context, "page": pages + 1},
            )
            pages += 1
            records.extend(page.records)

            if not page.has_next:
                break

            if max_pages is not None and pages >= max_pages:
                self.logger.warning(
                    f"Page cap of {max_pages} reached with more pages available; "
                    f"result truncated ({context})"
                )
                return PagedRecords(records=records, total_pages=pages, truncated=True)

            cursor = page.cursor
            if self.page_pause:
                await self.sleep(self.page_pause)

        self.logger.debug(f"Fetched {len(records)} records in {pages} pages ({context})")
        return PagedRecords(records=records, total_pages=pages, truncated=False)
