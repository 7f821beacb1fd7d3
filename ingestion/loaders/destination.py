"""
Persistence destination contract
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from core.exceptions import InvalidDestinationKeyError
from ingestion.types import WriteOperation


def split_key(key: str) -> List[str]:
    """Split a hierarchical key into its path segments"""
    return key.split("/")


class Destination(ABC):
    """
    A storage backend addressed by hierarchical keys ("a/b/c").

    Implementations must:
    - Apply one batch of operations per write_batch() call, raising on failure
    - Treat SET as an upsert (last writer wins)
    - Return persisted bucket payloads from load_buckets()
    """

    name: str = "destination"
    max_batch_size: int = 500

    def validate_key(self, key: str) -> None:
        """
        Check a destination key against this destination's path rules.

        Raises:
            InvalidDestinationKeyError: If the key is malformed
        """
        if not isinstance(key, str) or not key:
            raise InvalidDestinationKeyError(
                "Destination key must be a non-empty string",
                context={"destination_key": key, "destination": self.name},
            )
        for segment in split_key(key):
            if segment in ("", ".", ".."):
                raise InvalidDestinationKeyError(
                    f"Invalid segment '{segment}' in destination key",
                    context={"destination_key": key, "destination": self.name},
                )

    @abstractmethod
    async def write_batch(self, operations: Sequence[WriteOperation]) -> None:
        """Apply one batch of operations"""
        pass

    @abstractmethod
    async def load_buckets(self, entity_path: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Read persisted bucket documents directly under `entity_path`.

        Returns:
            Mapping of bucket key to the stored items; documents without an
            items list (summaries) are skipped
        """
        pass
