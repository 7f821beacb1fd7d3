"""
Local JSON file tree destination
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import aiofiles
import aiofiles.os

from core.config import settings
from core.exceptions import PersistenceBatchError
from ingestion.loaders.destination import Destination, split_key
from ingestion.types import WriteKind, WriteOperation

logger = logging.getLogger(__name__)


class LocalFileDestination(Destination):
    """
    Store documents as JSON files under a base directory.

    Key "a/b/c" maps to "<base_dir>/a/b/c.json". Files are written to a
    temporary sibling first and then moved into place, so readers never see
    a half-written document. A batch is not transactional: when one file
    fails, files written earlier in the same batch stay on disk.
    """

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        name: str = "local_files",
        max_batch_size: Optional[int] = None,
    ):
        self.base_dir = Path(base_dir or settings.LOCAL_STORE_DIR)
        self.name = name
        self.max_batch_size = max_batch_size or settings.ETL_BATCH_SIZE

    def path_for(self, key: str) -> Path:
        self.validate_key(key)
        *parents, leaf = split_key(key)
        return self.base_dir.joinpath(*parents, f"{leaf}.json")

    async def _write_document(self, path: Path, payload: Dict[str, Any]) -> None:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(payload, ensure_ascii=False, default=str))
            await aiofiles.os.replace(tmp_path, path)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise

    async def _delete_document(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    async def write_batch(self, operations: Sequence[WriteOperation]) -> None:
        for op in operations:
            path = self.path_for(op.destination_key)
            try:
                if op.kind == WriteKind.DELETE:
                    await self._delete_document(path)
                else:
                    await self._write_document(path, op.payload)
            except OSError as e:
                raise PersistenceBatchError(
                    f"Failed to write {op.destination_key}",
                    context={
                        "destination": self.name,
                        "destination_key": op.destination_key,
                        "batch_size": len(operations),
                    },
                    original_exception=e,
                )

        logger.debug(f"{self.name}: wrote {len(operations)} documents under {self.base_dir}")

    async def load_buckets(self, entity_path: str) -> Dict[str, List[Dict[str, Any]]]:
        self.validate_key(entity_path)
        directory = self.base_dir.joinpath(*split_key(entity_path))
        if not await aiofiles.os.path.isdir(directory):
            return {}

        buckets: Dict[str, List[Dict[str, Any]]] = {}
        for name in sorted(await aiofiles.os.listdir(directory)):
            if not name.endswith(".json") or name.startswith("."):
                continue
            async with aiofiles.open(directory / name, "r", encoding="utf-8") as f:
                document = json.loads(await f.read())
            if isinstance(document, dict) and isinstance(document.get("items"), list):
                buckets[name[:-len(".json")]] = document["items"]
        return buckets
