"""
Pytest configuration and fixtures
"""

import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

from core.exceptions import PersistenceBatchError
from ingestion.base import ResourceAdapter
from ingestion.loaders.destination import Destination
from ingestion.types import Page, WriteKind


class FakeAdapter(ResourceAdapter):
    """In-memory resource: records per entity served in pages of page_size"""

    def __init__(
        self,
        records_by_entity: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        entities: Optional[List[str]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        page_size: int = 2,
        listing_error: Optional[Exception] = None,
    ):
        super().__init__(resource_name="eventos", entity_collection="deputados")
        self.records_by_entity = records_by_entity or {}
        self.entities = entities if entities is not None else list(self.records_by_entity)
        self.failures = failures or {}
        self.page_size = page_size
        self.listing_error = listing_error
        self.calls = []
        self.entity_calls = 0

    async def fetch_entities_page(self, params, cursor):
        self.entity_calls += 1
        if self.listing_error is not None:
            raise self.listing_error
        return Page(records=[{"id": e} for e in self.entities], has_next=False)

    async def fetch_page(self, entity_id, params, cursor):
        self.calls.append((entity_id, dict(params), cursor))
        if entity_id in self.failures:
            raise self.failures[entity_id]
        records = self.records_by_entity.get(entity_id, [])
        start = cursor or 0
        end = start + self.page_size
        return Page(records=records[start:end], has_next=end < len(records), cursor=end)

    def extract_record_id(self, record):
        value = record.get("id")
        return str(value) if value is not None else None

    def extract_timestamp(self, record):
        return record.get("dataHoraInicio")


class InMemoryDestination(Destination):
    """Dictionary-backed destination; batches listed in fail_batches raise"""

    def __init__(self, name="memory", max_batch_size=500, fail_batches=(), fail_reads=False):
        self.name = name
        self.max_batch_size = max_batch_size
        self.fail_batches = set(fail_batches)
        self.fail_reads = fail_reads
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.batches: List[list] = []

    async def write_batch(self, operations):
        index = len(self.batches)
        self.batches.append(list(operations))
        if index in self.fail_batches:
            raise PersistenceBatchError(f"batch {index} rejected", context={"destination": self.name})
        for op in operations:
            if op.kind == WriteKind.DELETE:
                self.documents.pop(op.destination_key, None)
            else:
                self.documents[op.destination_key] = op.payload

    async def load_buckets(self, entity_path):
        if self.fail_reads:
            raise OSError("store unavailable")
        prefix = entity_path + "/"
        buckets = {}
        for key, document in sorted(self.documents.items()):
            name = key[len(prefix):]
            if key.startswith(prefix) and "/" not in name and isinstance(document.get("items"), list):
                buckets[name] = document["items"]
        return buckets


@pytest.fixture
def adapter_factory():
    """Build FakeAdapter instances"""
    return FakeAdapter


@pytest.fixture
def destination_factory():
    """Build InMemoryDestination instances"""
    return InMemoryDestination


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays"""
    return AsyncMock(return_value=None)


@pytest.fixture
def event_records():
    """Deputy event records as returned by the source API"""
    return {
        "204554": [
            {"id": 1, "dataHoraInicio": "2023-03-01T10:00", "descricao": "Sessão Deliberativa"},
            {"id": 2, "dataHoraInicio": "2023-05-10T14:00", "descricao": "Audiência Pública"},
            {"id": 3, "dataHoraInicio": "2024-02-07T09:30", "descricao": "Reunião Deliberativa"},
        ],
        "204555": [
            {"id": 10, "dataHoraInicio": "2024-04-01T10:00", "descricao": "Seminário"},
        ],
    }
