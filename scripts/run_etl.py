"""
Script to run the configured bucketed pipelines once, or on a schedule.

Usage:
    python scripts/run_etl.py                    # all pipelines, once
    python scripts/run_etl.py eventos            # one pipeline, once
    python scripts/run_etl.py --schedule         # all pipelines, every SCHEDULER_INTERVAL_MINUTES

Run options (concurrency, mode, retries, ...) come from the environment.
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from ingestion.bucketed import BucketedRecordPipeline
from ingestion.extractors.api_extractor import HttpResourceAdapter, build_client
from ingestion.loaders.document_store import DocumentStoreDestination
from ingestion.loaders.local_files import LocalFileDestination
from ingestion.run_history import record_run
from ingestion.scheduler import ETLScheduler

logger = logging.getLogger(__name__)

# Resources of the Chamber of Deputies open data API, one per deputy
RESOURCES = {
    "eventos": {
        "records_endpoint": "/deputados/{entity_id}/eventos",
        "id_field": "id",
        "timestamp_field": "dataHoraInicio",
    },
    "despesas": {
        "records_endpoint": "/deputados/{entity_id}/despesas",
        "id_field": ("codDocumento", "urlDocumento"),
        "timestamp_field": ("dataDocumento", "ano"),
    },
    "discursos": {
        "records_endpoint": "/deputados/{entity_id}/discursos",
        "id_field": ("uriEvento", "dataHoraInicio"),
        "timestamp_field": "dataHoraInicio",
    },
}

# shared across pipelines so the deputy listing is fetched once per process
_entity_cache = {}


def build_pipeline(resource: str, client) -> BucketedRecordPipeline:
    options = RESOURCES[resource]
    adapter = HttpResourceAdapter(
        client,
        resource_name=resource,
        entity_collection="deputados",
        entities_endpoint="/deputados",
        **options
    )
    destinations = [
        DocumentStoreDestination(async_session_maker),
        LocalFileDestination(settings.LOCAL_STORE_DIR),
    ]
    return BucketedRecordPipeline(adapter, destinations, cache=_entity_cache)


async def run_once(resources):
    async with build_client() as client:
        for resource in resources:
            stats = await build_pipeline(resource, client).run()
            logger.info(
                f"{resource}: {stats.state.value} - "
                f"entities {stats.extraction.success}/{stats.extraction.total}, "
                f"records {stats.transformation.success}, "
                f"writes {stats.load.success}/{stats.load.total}"
            )
            async with async_session_maker() as session:
                await record_run(session, stats)


async def run_scheduled(resources):
    client = build_client()
    scheduler = ETLScheduler()
    for resource in resources:
        scheduler.register(resource, lambda resource=resource: build_pipeline(resource, client))
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await client.aclose()


async def main(argv):
    schedule = "--schedule" in argv
    resources = [arg for arg in argv if not arg.startswith("--")] or list(RESOURCES)

    unknown = [r for r in resources if r not in RESOURCES]
    if unknown:
        logger.error(f"Unknown resources: {unknown}. Available: {list(RESOURCES)}")
        sys.exit(2)

    try:
        if schedule:
            await run_scheduled(resources)
        else:
            await run_once(resources)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main(sys.argv[1:]))
