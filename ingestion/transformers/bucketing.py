"""
Turn raw records into bucketed Records
"""

import logging
from typing import Any, Dict, Iterable, Optional

from core.exceptions import DataFormatError
from ingestion.base import ResourceAdapter
from ingestion.reconciliation import derive_bucket_key
from ingestion.types import UNKNOWN_BUCKET, BucketState, Record

logger = logging.getLogger(__name__)


class RecordNormalizer:
    """
    Normalize raw payloads of one resource into Records.

    Handles:
    - Id extraction (records without an id are rejected)
    - Bucket key derivation from the record timestamp
    - Rebuilding bucket state from persisted bucket documents
    """

    def __init__(self, adapter: ResourceAdapter):
        self.adapter = adapter

    def normalize(self, raw_record: Dict[str, Any], entity_id: Optional[str] = None) -> Record:
        """
        Normalize a raw record.

        Records whose bucket key cannot be derived land in the unknown bucket;
        the caller decides whether that deserves a warning.

        Raises:
            DataFormatError: If the record is not a mapping or has no usable id
        """
        if not isinstance(raw_record, dict):
            raise DataFormatError(
                "Record is not an object",
                context={"entity_id": entity_id, "record_type": type(raw_record).__name__},
            )

        record_id = self.adapter.extract_record_id(raw_record)
        if record_id is None or str(record_id).strip() == "":
            raise DataFormatError(
                "Record has no usable id",
                context={"entity_id": entity_id, "field_name": "id"},
            )

        bucket_key = derive_bucket_key(self.adapter.extract_timestamp(raw_record))
        return Record(
            id=str(record_id),
            bucket_key=bucket_key or UNKNOWN_BUCKET,
            payload=raw_record,
        )

    def rebuild_state(
        self,
        stored: Dict[str, Iterable[Dict[str, Any]]],
        entity_id: Optional[str] = None,
    ) -> Dict[str, BucketState]:
        """
        Rebuild bucket state from persisted bucket payloads.

        The stored bucket key is kept as is; items without an id cannot be
        reconciled and are dropped with a warning.
        """
        state: Dict[str, BucketState] = {}
        for bucket, items in stored.items():
            records: Dict[str, Record] = {}
            dropped = 0
            for item in items:
                record_id = self.adapter.extract_record_id(item) if isinstance(item, dict) else None
                if record_id is None or str(record_id).strip() == "":
                    dropped += 1
                    continue
                records[str(record_id)] = Record(id=str(record_id), bucket_key=bucket, payload=item)
            if dropped:
                logger.warning(
                    f"Dropped {dropped} stored items without id in bucket {bucket} "
                    f"(entity {entity_id})"
                )
            state[bucket] = BucketState(key=bucket, records=records)
        return state


def build_bucket_document(state: BucketState, updated_at: str) -> Dict[str, Any]:
    """Payload persisted for one bucket"""
    return {
        "bucket": state.key,
        "total_records": len(state),
        "updated_at": updated_at,
        "items": state.payloads(),
    }


def build_summary_document(
    entity_id: str,
    buckets: Dict[str, BucketState],
    updated_at: str,
) -> Dict[str, Any]:
    """Per-entity summary with record counts per bucket"""
    counts = {key: len(state) for key, state in buckets.items()}
    return {
        "entity_id": entity_id,
        "total_records": sum(counts.values()),
        "buckets": counts,
        "bucket_keys": sorted(counts),
        "updated_at": updated_at,
    }
