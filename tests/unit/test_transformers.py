"""
Unit tests for record normalization and bucket documents
"""

import logging

import pytest

from core.exceptions import DataFormatError
from ingestion.transformers.bucketing import RecordNormalizer, build_bucket_document, build_summary_document
from ingestion.types import UNKNOWN_BUCKET, BucketState, Record


@pytest.fixture
def normalizer(adapter_factory):
    return RecordNormalizer(adapter_factory())


class TestRecordNormalizer:
    """Test raw record normalization"""

    def test_normalize_derives_year_bucket(self, normalizer):
        raw = {"id": 77, "dataHoraInicio": "2023-09-12T15:00", "descricao": "Reunião"}

        record = normalizer.normalize(raw, entity_id="204554")

        assert record.id == "77"
        assert record.bucket_key == "2023"
        assert record.payload is raw

    def test_underivable_timestamp_goes_to_unknown(self, normalizer):
        record = normalizer.normalize({"id": 1, "dataHoraInicio": "sem data"})

        assert record.bucket_key == UNKNOWN_BUCKET

    def test_missing_timestamp_goes_to_unknown(self, normalizer):
        assert normalizer.normalize({"id": 1}).bucket_key == UNKNOWN_BUCKET

    @pytest.mark.parametrize("raw", [{"descricao": "no id"}, {"id": None}, {"id": "  "}, ["id", 1]])
    def test_unusable_records_raise(self, normalizer, raw):
        with pytest.raises(DataFormatError):
            normalizer.normalize(raw, entity_id="204554")

    def test_rebuild_state_keeps_stored_bucket_and_drops_items_without_id(self, normalizer, caplog):
        caplog.set_level(logging.WARNING)
        stored = {
            "2023": [{"id": 1, "dataHoraInicio": "2023-01-01"}, {"descricao": "orphan"}],
            "unknown": [{"id": 9}],
        }

        state = normalizer.rebuild_state(stored, entity_id="204554")

        assert state["2023"].ids == ["1"]
        assert state["unknown"].records["9"].bucket_key == "unknown"
        assert any("Dropped 1 stored items" in r.getMessage() for r in caplog.records)


class TestBucketDocuments:
    """Test persisted document shapes"""

    def test_bucket_document(self):
        state = BucketState(
            key="2024",
            records={
                "3": Record(id="3", bucket_key="2024", payload={"id": 3}),
                "4": Record(id="4", bucket_key="2024", payload={"id": 4}),
            },
        )

        document = build_bucket_document(state, "2024-06-01T00:00:00+00:00")

        assert document == {
            "bucket": "2024",
            "total_records": 2,
            "updated_at": "2024-06-01T00:00:00+00:00",
            "items": [{"id": 3}, {"id": 4}],
        }

    def test_summary_document(self):
        buckets = {
            "2024": BucketState(key="2024", records={"3": Record(id="3", bucket_key="2024", payload={"id": 3})}),
            "2023": BucketState(key="2023", records={}),
        }

        summary = build_summary_document("204554", buckets, "now")

        assert summary["entity_id"] == "204554"
        assert summary["total_records"] == 1
        assert summary["buckets"] == {"2024": 1, "2023": 0}
        assert summary["bucket_keys"] == ["2023", "2024"]
