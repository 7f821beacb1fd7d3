"""
Year-bucketed record pipeline.

One pipeline instance ingests one resource (events, expenses, speeches, ...)
for a set of entities (deputies, parties, ...):

Extract:   list entities, then fetch every page of every entity's records
           under bounded concurrency
Transform: normalize raw records and bucket them by year
Load:      reconcile against persisted buckets (FULL or INCREMENTAL) and
           stage one document per touched bucket plus an entity summary
"""

import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Mapping, MutableMapping, Optional, Protocol, Sequence, Tuple, Union

from core.config import settings
from core.exceptions import DataFormatError, InvalidDestinationKeyError, PipelineFatalError
from ingestion.backoff import BackoffPolicy
from ingestion.base import ResourceAdapter
from ingestion.dispatcher import ConcurrencyLimitedDispatcher
from ingestion.loaders.batch_manager import BatchPersistenceManager
from ingestion.loaders.destination import Destination
from ingestion.pagination import PaginatedFetcher
from ingestion.reconciliation import ReconciliationEngine, bucket_records
from ingestion.retry import RetryingExecutor
from ingestion.runner import PipelineOrchestrator, ProgressHandler
from ingestion.transformers.bucketing import (
    RecordNormalizer,
    build_bucket_document,
    build_summary_document,
)
from ingestion.types import UNKNOWN_BUCKET, DispatchProgress, FetchResult, Record, WorkItem, WriteOperation
from models.base import MergeMode
from schemas.pipeline import RunConfig

logger = logging.getLogger(__name__)

SUMMARY_DOCUMENT = "summary"


class StateReader(Protocol):
    async def load_buckets(self, entity_path: str) -> Dict[str, List[Dict[str, Any]]]:
        ...


class BucketedRecordPipeline(PipelineOrchestrator):
    """
    Concrete orchestrator for bucketed resources.

    Existing state is read from exactly one StateReader (the first
    destination unless another one is given); every destination receives
    the same writes.
    """

    def __init__(
        self,
        adapter: ResourceAdapter,
        destinations: Sequence[Destination],
        options: Optional[Union[RunConfig, Mapping[str, Any]]] = None,
        *,
        state_reader: Optional[StateReader] = None,
        name: Optional[str] = None,
        policy: Optional[BackoffPolicy] = None,
        executor: Optional[RetryingExecutor] = None,
        batch_pause: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
        cache: Optional[MutableMapping[str, Any]] = None,
        on_progress: Optional[ProgressHandler] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ):
        super().__init__(
            options,
            name=name or adapter.resource_name,
            logger=logger,
            cache=cache,
            on_progress=on_progress,
        )
        self.destinations = list(destinations)
        if not self.destinations:
            raise ValueError("At least one destination is required")

        self.adapter = adapter
        self.state_reader = state_reader or self.destinations[0]
        self.policy = policy
        self.executor = executor
        self.batch_pause = settings.ETL_BATCH_PAUSE_MS / 1000 if batch_pause is None else batch_pause
        self.sleep = sleep
        self._should_continue = should_continue
        self._cancel_requested = False

        self.normalizer = RecordNormalizer(adapter)
        self.reconciler = ReconciliationEngine()

        self.entity_ids: List[str] = []
        self._results: List[FetchResult] = []
        self._records_by_entity: Dict[str, Dict[str, List[Record]]] = {}

    def cancel(self) -> None:
        """Stop dispatching after the chunk in flight"""
        self._cancel_requested = True

    def should_continue(self) -> bool:
        if self._cancel_requested:
            return False
        return self._should_continue() if self._should_continue else True

    def validate(self, config: RunConfig) -> Tuple[List[str], List[str]]:
        errors: List[str] = []
        warnings: List[str] = []
        if config.mode == MergeMode.FULL and config.date_start:
            warnings.append(
                "FULL mode with a date range replaces each touched bucket "
                "with the records of that range only"
            )
        if not any(self.state_reader is d for d in self.destinations):
            warnings.append("State reader is not one of the destinations")
        return errors, warnings

    # --------------------------------------------------
    # Extract
    # --------------------------------------------------

    def _build_fetcher(self, config: RunConfig) -> PaginatedFetcher:
        executor = self.executor or RetryingExecutor(
            policy=self.policy,
            timeout=config.operation_timeout_s,
            sleep=self.sleep,
            logger=self.logger,
        )
        return PaginatedFetcher(
            executor,
            max_attempts=config.max_retries,
            page_pause=config.page_pause,
            sleep=self.sleep,
            logger=self.logger,
        )

    async def _list_entities(self, config: RunConfig, fetcher: PaginatedFetcher) -> List[str]:
        params = self.adapter.build_entity_params(config)
        cache_key = f"entities:{self.adapter.entity_collection}:{sorted(params.items())}"
        if cache_key in self.cache:
            self.logger.debug(f"[{self.name}] Entity listing served from cache")
            return list(self.cache[cache_key])

        try:
            listing = await fetcher.fetch_all(
                self.adapter.fetch_entities_page,
                params,
                None,
                context={"operation": f"list {self.adapter.entity_collection}"},
            )
        except Exception as e:
            raise PipelineFatalError(
                f"Failed to list {self.adapter.entity_collection}",
                context={"stage": "extracting"},
                original_exception=e,
            )

        ids: List[str] = []
        seen = set()
        for entity in listing.records:
            entity_id = self.adapter.extract_entity_id(entity) if isinstance(entity, dict) else None
            if entity_id is None or entity_id in seen:
                continue
            seen.add(entity_id)
            ids.append(entity_id)

        self.cache[cache_key] = list(ids)
        return ids

    async def _resolve_entities(self, config: RunConfig, fetcher: PaginatedFetcher) -> List[str]:
        if config.entity_ids:
            ids = list(dict.fromkeys(config.entity_ids))
        else:
            ids = await self._list_entities(config, fetcher)
            if config.entity_range:
                start, end = config.entity_range
                if start > len(ids):
                    self.warn(f"Entity range {start}-{end} is beyond the {len(ids)} listed entities")
                ids = ids[start - 1:end]

        if config.limit is not None:
            ids = ids[:config.limit]
        if not ids:
            self.warn("No entities selected for this run")
        return ids

    async def _on_dispatch_progress(self, progress: DispatchProgress) -> None:
        percent = 5 + (55 * progress.completed // progress.total if progress.total else 55)
        await self.emit_progress(
            percent,
            f"Fetched {progress.completed}/{progress.total} entities",
            details={"succeeded": progress.succeeded},
        )

    async def extract(self, config: RunConfig) -> None:
        fetcher = self._build_fetcher(config)
        self.entity_ids = await self._resolve_entities(config, fetcher)

        params = self.adapter.build_params(config)
        items = [
            WorkItem(
                item_id=entity_id,
                fetch=partial(
                    fetcher.fetch_all,
                    partial(self.adapter.fetch_page, entity_id),
                    params,
                    config.max_pages_per_fetch,
                    {"operation": f"{self.adapter.resource_name} of {entity_id}", "entity_id": entity_id},
                ),
            )
            for entity_id in self.entity_ids
        ]

        dispatcher = ConcurrencyLimitedDispatcher(
            config.concurrency,
            config.inter_chunk_pause,
            sleep=self.sleep,
            logger=self.logger,
        )
        self._results = await dispatcher.dispatch(
            items,
            on_progress=self._on_dispatch_progress,
            should_continue=self.should_continue,
        )

        for result in self._results:
            if result.ok:
                self.stats.extraction.record_success()
                if result.truncated:
                    self.warn(
                        f"Entity {result.item_id}: page cap of {config.max_pages_per_fetch} "
                        f"reached, records truncated"
                    )
            else:
                self.stats.extraction.record_failure()

        self.logger.info(
            f"[{self.name}] Extraction: {self.stats.extraction.success}/{len(items)} entities, "
            f"{sum(len(r.records) for r in self._results)} records"
        )

    # --------------------------------------------------
    # Transform
    # --------------------------------------------------

    async def transform(self, config: RunConfig) -> None:
        for result in self._results:
            if not result.ok:
                continue

            records: List[Record] = []
            for raw in result.records:
                try:
                    record = self.normalizer.normalize(raw, result.item_id)
                except DataFormatError as e:
                    self.stats.transformation.record_failure()
                    self.logger.warning(f"[{self.name}] Entity {result.item_id}: {e.message}")
                    continue

                if record.bucket_key == UNKNOWN_BUCKET:
                    self.warn(
                        f"Entity {result.item_id}: record {record.id} has no usable timestamp, "
                        f"stored in bucket '{UNKNOWN_BUCKET}'"
                    )
                self.stats.transformation.record_success()
                records.append(record)

            self._records_by_entity[result.item_id] = bucket_records(records)

        self.logger.info(
            f"[{self.name}] Transformation: {self.stats.transformation.success} records bucketed, "
            f"{self.stats.transformation.failure} rejected"
        )

    # --------------------------------------------------
    # Load
    # --------------------------------------------------

    async def load(self, config: RunConfig) -> None:
        manager = BatchPersistenceManager(
            self.destinations,
            batch_pause=self.batch_pause,
            sleep=self.sleep,
            logger=self.logger,
        )
        updated_at = datetime.now(timezone.utc).isoformat()

        for entity_id, new_by_bucket in self._records_by_entity.items():
            if not new_by_bucket:
                continue

            path = self.adapter.entity_path(entity_id)
            try:
                stored = self.normalizer.rebuild_state(await self.state_reader.load_buckets(path), entity_id)
            except Exception as e:
                if config.mode == MergeMode.INCREMENTAL:
                    self.stats.add_skipped()
                    self.warn(f"Entity {entity_id} skipped: existing state could not be read ({e})")
                    continue
                stored = None
                self.warn(f"Entity {entity_id}: summary not written, existing state could not be read ({e})")

            existing = stored if config.mode == MergeMode.INCREMENTAL else {}
            merged = self.reconciler.reconcile(new_by_bucket, existing, config.mode)

            operations = [
                WriteOperation(f"{path}/{key}", build_bucket_document(merged[key], updated_at))
                for key in new_by_bucket
            ]
            if stored is not None:
                # untouched stored buckets stay in the summary
                persisted = {**stored, **merged}
                operations.append(
                    WriteOperation(f"{path}/{SUMMARY_DOCUMENT}", build_summary_document(entity_id, persisted, updated_at))
                )

            # all keys of an entity are checked before any is staged
            try:
                for op in operations:
                    for destination in self.destinations:
                        destination.validate_key(op.destination_key)
            except InvalidDestinationKeyError as e:
                self.stats.add_skipped()
                self.warn(f"Entity {entity_id} skipped: {e.message} ({e.context.get('destination_key')})")
                continue

            for op in operations:
                manager.stage(op)

        results = await manager.commit()
        self.stats.record_commit(results)
        await self.emit_progress(95, "Committed staged documents")
