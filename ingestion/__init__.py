"""
ETL engine components for bucketed record ingestion.

This package contains everything between a remote paginated API and the
persisted year buckets:

Modules:
    types: Value types (Page, WorkItem, FetchResult, Record, WriteOperation, ...)
    backoff: Error classification and exponential backoff with jitter
    retry: Retrying executor for single operations
    pagination: Paginated fetcher built on the executor
    dispatcher: Concurrency-limited dispatch of work items
    reconciliation: FULL / INCREMENTAL merge of bucketed records
    stats: Run statistics accumulator
    runner: Pipeline orchestrator (state machine, template method)
    bucketed: Concrete pipeline for year-bucketed resources
    base: Resource adapter contract
    run_history: Persisted run statistics
    scheduler: APScheduler integration for recurring runs

Subpackages:
    extractors: HTTP resource adapter
    transformers: Record normalization and bucket documents
    loaders: Destinations and the batch persistence manager

Architecture:
    1. Extract - list entities, fetch every page per entity under bounded
       concurrency; each page fetch is retried on transient errors
    2. Transform - normalize records and bucket them by year
    3. Load - reconcile against persisted buckets and commit in batches to
       every destination

    Item and batch failures are counted, never fatal; only validation and
    stage-level failures end a run in ERRORED.

Usage:
    from ingestion.bucketed import BucketedRecordPipeline
    from ingestion.extractors.api_extractor import HttpResourceAdapter, build_client
    from ingestion.loaders.local_files import LocalFileDestination

Example:
    async with build_client() as client:
        adapter = HttpResourceAdapter(
            client,
            resource_name="eventos",
            entity_collection="deputados",
            entities_endpoint="/deputados",
            records_endpoint="/deputados/{entity_id}/eventos",
        )
        pipeline = BucketedRecordPipeline(
            adapter,
            [LocalFileDestination("data/store")],
            {"mode": "incremental", "concurrency": 3},
        )
        stats = await pipeline.run()

    print(f"Loaded {stats.load.success}/{stats.load.total} documents")
"""

__all__ = [
    "ResourceAdapter",
    "PipelineOrchestrator",
    "BucketedRecordPipeline",
    "HttpResourceAdapter",
    "RetryingExecutor",
    "PaginatedFetcher",
    "ConcurrencyLimitedDispatcher",
    "ReconciliationEngine",
    "BatchPersistenceManager",
    "LocalFileDestination",
    "DocumentStoreDestination",
]
