"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (ETLStatus, PipelineState, MergeMode)
    document: Hierarchical document store used as a persistence destination
    etl_run: Pipeline execution history (one row per sealed RunStats)

Database Schema:
    All models inherit from the Base declarative class and use
    PostgreSQL-specific features like JSONB for opaque payloads.

Usage:
    from models.document import StoredDocument
    from models.etl_run import ETLRun
    from models.base import ETLStatus, MergeMode

Example:
    # Store a bucket document
    doc = StoredDocument(
        key="deputados/204554/eventos/2023",
        parent_key="deputados/204554/eventos",
        document_id="2023",
        payload={"bucket": "2023", "items": []}
    )
    session.add(doc)
    await session.commit()
"""

__all__ = [
    "Base",
    "ETLStatus",
    "PipelineState",
    "MergeMode",
    "StoredDocument",
    "ETLRun",
]
