"""
Reconciliation of newly fetched records against persisted bucket state.

FULL: every bucket present in the new records becomes exactly those records.
INCREMENTAL: existing and new records are merged by id, new records win.
Buckets that only exist in the persisted state pass through unchanged.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models.base import MergeMode
from ingestion.types import UNKNOWN_BUCKET, BucketState, Record

logger = logging.getLogger(__name__)

_YEAR = re.compile(r"^\d{4}$")
_LEADING_YEAR = re.compile(r"^(\d{4})-\d{2}")


def derive_bucket_key(value: Any) -> Optional[str]:
    """
    Derive a 4-digit year bucket key from a timestamp-like value.

    Accepts datetime/date objects, ISO 8601 strings and bare years.
    Returns None when no year can be derived.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        return f"{value.year:04d}"
    if isinstance(value, int):
        return str(value) if 1000 <= value <= 9999 else None

    text = str(value).strip()
    if not text:
        return None
    if _YEAR.match(text):
        return text

    try:
        return f"{datetime.fromisoformat(text.replace('Z', '+00:00')).year:04d}"
    except ValueError:
        pass

    match = _LEADING_YEAR.match(text)
    return match.group(1) if match else None


def bucket_records(records: Iterable[Record]) -> Dict[str, List[Record]]:
    """Group records by bucket key, preserving arrival order"""
    grouped: Dict[str, List[Record]] = {}
    for record in records:
        grouped.setdefault(record.bucket_key, []).append(record)
    return grouped


def _bucket_order(key: str):
    # years ascending, sentinel last
    return (key == UNKNOWN_BUCKET, key)


class ReconciliationEngine:
    """
    Pure merge of new and existing bucketed records.

    Deterministic and idempotent: reconciling the same inputs twice yields
    equal state, and reconciling a result against its own new records
    changes nothing.
    """

    def reconcile(
        self,
        new_by_bucket: Mapping[str, Iterable[Record]],
        existing_by_bucket: Optional[Mapping[str, BucketState]],
        mode: MergeMode,
    ) -> Dict[str, BucketState]:
        mode = MergeMode(mode)
        existing_by_bucket = existing_by_bucket or {}
        merged: Dict[str, BucketState] = {}

        for key in sorted(set(new_by_bucket) | set(existing_by_bucket), key=_bucket_order):
            existing = existing_by_bucket.get(key)

            if key not in new_by_bucket:
                merged[key] = existing
                continue

            if mode == MergeMode.INCREMENTAL and existing is not None:
                records = dict(existing.records)
            else:
                records = {}

            # replacements keep their slot, unseen ids are appended
            for record in new_by_bucket[key]:
                records[record.id] = record

            merged[key] = BucketState(key=key, records=records)

        logger.debug(
            f"Reconciled {len(merged)} buckets in {mode.value} mode "
            f"({len(new_by_bucket)} with new records)"
        )
        return merged
