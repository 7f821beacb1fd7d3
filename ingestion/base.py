"""
Abstract base class for resource adapters
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ingestion.types import Page
from schemas.pipeline import RunConfig


class ResourceAdapter(ABC):
    """
    Abstract base class for all remote resources.

    An adapter is the only resource-specific piece of a pipeline:
    - How to list the entities that own records (deputies, parties, ...)
    - How to fetch one page of records for an entity
    - How to read a record's id and timestamp
    - Where an entity's bucket documents live

    Everything else (pagination, retry, dispatch, reconciliation,
    persistence) is shared.
    """

    def __init__(self, resource_name: str, entity_collection: str):
        self.resource_name = resource_name
        self.entity_collection = entity_collection

    @abstractmethod
    async def fetch_entities_page(self, params: Dict[str, Any], cursor: Optional[Any]) -> Page:
        """
        Fetch one page of the entity listing.

        Args:
            params: Request parameters built by build_entity_params()
            cursor: Opaque cursor from the previous page (None for the first)
        """
        pass

    @abstractmethod
    async def fetch_page(self, entity_id: str, params: Dict[str, Any], cursor: Optional[Any]) -> Page:
        """
        Fetch one page of records belonging to `entity_id`.

        Raises:
            FetchError subclasses carrying status_code
        """
        pass

    @abstractmethod
    def extract_record_id(self, record: Dict[str, Any]) -> Optional[str]:
        """Extract unique identifier from a record"""
        pass

    @abstractmethod
    def extract_timestamp(self, record: Dict[str, Any]) -> Optional[Any]:
        """Extract the value the bucket key is derived from"""
        pass

    def extract_entity_id(self, entity: Dict[str, Any]) -> Optional[str]:
        """Extract the entity id from one entity listing record"""
        value = entity.get("id")
        return str(value) if value is not None else None

    def entity_path(self, entity_id: str) -> str:
        """Hierarchical path under which an entity's bucket documents live"""
        return f"{self.entity_collection}/{entity_id}/{self.resource_name}"

    def build_params(self, config: RunConfig) -> Dict[str, Any]:
        """Record request parameters derived from the run configuration"""
        params: Dict[str, Any] = {}
        if config.date_start and config.date_end:
            params["date_start"] = config.date_start.isoformat()
            params["date_end"] = config.date_end.isoformat()
        return params

    def build_entity_params(self, config: RunConfig) -> Dict[str, Any]:
        """Entity listing request parameters"""
        return {}
