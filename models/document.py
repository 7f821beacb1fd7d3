from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredDocument(Base):
    """
    Hierarchical document store backing the remote destination.

    Design:
    - key is the full hierarchical path (collection/document[/collection/document...])
    - parent_key is the key minus its last segment, so all bucket documents of
      one entity collection can be listed with a single indexed lookup
    - payload is opaque JSON; SET replaces it as a whole (last writer wins)
    """
    __tablename__ = "documents"

    key = Column(String(1024), primary_key=True)
    parent_key = Column(String(1024), nullable=False, index=True)
    document_id = Column(String(255), nullable=False)

    payload = Column(JSONB, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_documents_parent_document", "parent_key", "document_id"),
    )
