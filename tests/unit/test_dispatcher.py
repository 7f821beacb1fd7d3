"""
Unit tests for the concurrency-limited dispatcher
"""

import asyncio

import pytest
from unittest.mock import Mock

from core.exceptions import DispatchCancelledError, ResourceNotFoundError
from ingestion.dispatcher import ConcurrencyLimitedDispatcher
from ingestion.types import PagedRecords, WorkItem


def make_item(item_id, records=None, error=None, delay=0.0, tracker=None):
    async def fetch():
        if tracker is not None:
            tracker["in_flight"] += 1
            tracker["max"] = max(tracker["max"], tracker["in_flight"])
            tracker["started"].append(item_id)
        try:
            await asyncio.sleep(delay)
            if error is not None:
                raise error
            return records if records is not None else [{"id": item_id}]
        finally:
            if tracker is not None:
                tracker["in_flight"] -= 1

    return WorkItem(item_id=item_id, fetch=fetch)


@pytest.fixture
def tracker():
    return {"in_flight": 0, "max": 0, "started": []}


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_failing_item_is_isolated(self, no_sleep):
        """Three items, concurrency two, the second one always 404s"""
        progress = Mock(return_value=None)
        items = [
            make_item("1"),
            make_item("2", error=ResourceNotFoundError("no such deputy", status_code=404)),
            make_item("3"),
        ]
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=2, inter_chunk_pause=1.6, sleep=no_sleep)

        results = await dispatcher.dispatch(items, on_progress=progress)

        assert [r.item_id for r in results] == ["1", "2", "3"]
        assert results[0].records == [{"id": "1"}]
        assert results[2].records == [{"id": "3"}]
        assert isinstance(results[1].error, ResourceNotFoundError)
        assert results[1].records == []

        # two chunks: sizes 2 then 1, one pause in between
        assert progress.call_count == 2
        first, second = (c.args[0] for c in progress.call_args_list)
        assert (first.completed, first.total, first.succeeded) == (2, 3, 1)
        assert (second.completed, second.total, second.succeeded) == (3, 3, 2)
        no_sleep.assert_awaited_once_with(1.6)

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, no_sleep, tracker):
        items = [make_item(str(i), delay=0.01, tracker=tracker) for i in range(10)]
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=3, sleep=no_sleep)

        results = await dispatcher.dispatch(items)

        assert len(results) == 10
        assert tracker["max"] == 3

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, no_sleep):
        items = [make_item("slow", delay=0.03), make_item("fast", delay=0.0), make_item("medium", delay=0.01)]
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=3, sleep=no_sleep)

        results = await dispatcher.dispatch(items)

        assert [r.item_id for r in results] == ["slow", "fast", "medium"]

    @pytest.mark.asyncio
    async def test_paged_records_are_unpacked(self, no_sleep):
        paged = PagedRecords(records=[{"id": "a"}, {"id": "b"}], total_pages=2, truncated=True)
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=1, sleep=no_sleep)

        [result] = await dispatcher.dispatch([make_item("x", records=paged)])

        assert result.ok
        assert result.total_pages == 2
        assert result.truncated is True
        assert len(result.records) == 2

    @pytest.mark.asyncio
    async def test_should_continue_stops_between_chunks(self, no_sleep, tracker):
        items = [make_item(str(i), tracker=tracker) for i in range(5)]
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=2, sleep=no_sleep)
        checks = iter([True, False])

        results = await dispatcher.dispatch(items, should_continue=lambda: next(checks))

        assert len(results) == 5
        assert tracker["started"] == ["0", "1", "2", "3"]
        assert all(r.ok for r in results[:4])
        assert isinstance(results[4].error, DispatchCancelledError)

    @pytest.mark.asyncio
    async def test_progress_callback_errors_are_ignored(self, no_sleep):
        def broken(progress):
            raise RuntimeError("display went away")

        dispatcher = ConcurrencyLimitedDispatcher(concurrency=1, sleep=no_sleep)

        results = await dispatcher.dispatch([make_item("1"), make_item("2")], on_progress=broken)

        assert all(r.ok for r in results)

    @pytest.mark.asyncio
    async def test_empty_input(self, no_sleep):
        dispatcher = ConcurrencyLimitedDispatcher(concurrency=2, sleep=no_sleep)
        assert await dispatcher.dispatch([]) == []

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            ConcurrencyLimitedDispatcher(concurrency=0)
        with pytest.raises(ValueError):
            ConcurrencyLimitedDispatcher(concurrency=1, inter_chunk_pause=-1)
