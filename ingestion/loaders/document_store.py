"""
Document store destination backed by PostgreSQL with upsert logic (idempotency)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import async_session_maker
from core.exceptions import InvalidDestinationKeyError, PersistenceBatchError
from ingestion.loaders.destination import Destination, split_key
from ingestion.types import WriteKind, WriteOperation
from models.document import StoredDocument

logger = logging.getLogger(__name__)


class DocumentStoreDestination(Destination):
    """
    Store documents in the `documents` table.

    Ensures:
    - One transaction per batch (all or nothing)
    - SET is INSERT ... ON CONFLICT UPDATE, so repeated runs do not duplicate
    - Keys alternate collection/document, so they have an even segment count
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
        name: str = "document_store",
        max_batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.name = name
        self.max_batch_size = max_batch_size or settings.ETL_BATCH_SIZE

    def validate_key(self, key: str) -> None:
        super().validate_key(key)
        if len(split_key(key)) % 2 != 0:
            raise InvalidDestinationKeyError(
                "Document keys need an even number of segments (collection/document pairs)",
                context={"destination_key": key, "destination": self.name},
            )

    def _upsert(self, op: WriteOperation, now: datetime):
        parent_key, _, document_id = op.destination_key.rpartition("/")
        stmt = insert(StoredDocument).values(
            key=op.destination_key,
            parent_key=parent_key,
            document_id=document_id,
            payload=op.payload,
            created_at=now,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=[StoredDocument.key],
            set_={
                "payload": stmt.excluded.payload,
                "updated_at": stmt.excluded.updated_at,
            },
        )

    async def write_batch(self, operations: Sequence[WriteOperation]) -> None:
        if not operations:
            return

        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            try:
                for op in operations:
                    if op.kind == WriteKind.DELETE:
                        await session.execute(
                            delete(StoredDocument).where(StoredDocument.key == op.destination_key)
                        )
                    else:
                        await session.execute(self._upsert(op, now))
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise PersistenceBatchError(
                    "Document store batch failed and was rolled back",
                    context={"destination": self.name, "batch_size": len(operations)},
                    original_exception=e,
                )

        logger.debug(f"{self.name}: committed batch of {len(operations)} operations")

    async def load_buckets(self, entity_path: str) -> Dict[str, List[Dict[str, Any]]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StoredDocument)
                .where(StoredDocument.parent_key == entity_path)
                .order_by(StoredDocument.document_id)
            )
            documents = result.scalars().all()

        buckets: Dict[str, List[Dict[str, Any]]] = {}
        for document in documents:
            payload = document.payload
            if isinstance(payload, dict) and isinstance(payload.get("items"), list):
                buckets[document.document_id] = payload["items"]
        return buckets
