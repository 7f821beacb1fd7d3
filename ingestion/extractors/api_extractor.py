"""
HTTP resource adapter over httpx.

This module maps a paginated REST resource onto the ResourceAdapter
contract with:
- Page number / page size query parameters (names configurable)
- Payload lookup under "dados", "data" or a bare list
- Next page detection from links, an explicit has_next flag, or the
  short page rule (a page with fewer items than requested is the last)
- Status codes mapped to typed fetch errors; retry is left to the executor
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from core.config import settings
from core.exceptions import (
    AuthenticationError,
    BadRequestError,
    DataFormatError,
    FetchError,
    FetchRetryableError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
    ServerError,
)
from ingestion.base import ResourceAdapter
from ingestion.types import Page
from schemas.pipeline import RunConfig

logger = logging.getLogger(__name__)

FieldNames = Union[str, Sequence[str]]


def _first_present(record: Dict[str, Any], fields: FieldNames) -> Optional[Any]:
    if isinstance(fields, str):
        fields = (fields,)
    for name in fields:
        value = record.get(name)
        if value is not None and value != "":
            return value
    return None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        # HTTP-date form is not honoured
        return None


def _has_next_link(links: Any) -> bool:
    if isinstance(links, dict):
        return bool(links.get("next"))
    if isinstance(links, list):
        return any(isinstance(link, dict) and link.get("rel") == "next" for link in links)
    return False


class HttpResourceAdapter(ResourceAdapter):
    """
    Adapter for one resource of a REST API, e.g. the events of each deputy.

    Attributes:
        client: Shared httpx.AsyncClient (base_url, timeout and headers set by the host)
        entities_endpoint: Path of the entity listing, e.g. "/deputados"
        records_endpoint: Path template with {entity_id}, e.g. "/deputados/{entity_id}/eventos"
        id_field: Field (or fallback fields) holding the record id
        timestamp_field: Field (or fallback fields) the bucket year is derived from
        page_size: Items requested per page
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        resource_name: str,
        entity_collection: str,
        entities_endpoint: str,
        records_endpoint: str,
        id_field: FieldNames = "id",
        timestamp_field: FieldNames = "dataHoraInicio",
        entity_id_field: str = "id",
        page_param: str = "pagina",
        size_param: str = "itens",
        page_size: Optional[int] = None,
        date_start_param: str = "dataInicio",
        date_end_param: str = "dataFim",
    ):
        super().__init__(resource_name=resource_name, entity_collection=entity_collection)
        self.client = client
        self.entities_endpoint = entities_endpoint
        self.records_endpoint = records_endpoint
        self.id_field = id_field
        self.timestamp_field = timestamp_field
        self.entity_id_field = entity_id_field
        self.page_param = page_param
        self.size_param = size_param
        self.page_size = page_size or settings.ETL_ITEMS_PER_PAGE
        self.date_start_param = date_start_param
        self.date_end_param = date_end_param

    # --------------------------------------------------
    # Transport
    # --------------------------------------------------

    def _raise_for_status(self, response: httpx.Response, endpoint: str) -> None:
        status = response.status_code
        if status < 400:
            return

        context = {"response_body": response.text[:500]}
        if status == 400:
            raise BadRequestError(f"Bad request: {endpoint}", status_code=status, endpoint=endpoint, context=context)
        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {endpoint}", status_code=status, endpoint=endpoint, context=context
            )
        if status == 404:
            raise ResourceNotFoundError(
                f"Resource not found: {endpoint}", status_code=status, endpoint=endpoint, context=context
            )
        if status == 429:
            raise RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                endpoint=endpoint,
                context=context,
            )
        if status == 408:
            raise FetchRetryableError(
                f"Request timeout reported by {endpoint}", status_code=status, endpoint=endpoint, context=context
            )
        if status >= 500:
            raise ServerError(f"Server error {status} from {endpoint}", status_code=status, endpoint=endpoint, context=context)

        raise FetchError(f"Unexpected status {status} from {endpoint}", status_code=status, endpoint=endpoint, context=context)

    async def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Any:
        try:
            response = await self.client.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timeout for {endpoint}", endpoint=endpoint, original_exception=e)
        except httpx.TransportError as e:
            raise NetworkError(f"Network error for {endpoint}", endpoint=endpoint, original_exception=e)

        self._raise_for_status(response, endpoint)

        try:
            return response.json()
        except ValueError as e:
            raise DataFormatError(
                "Failed to parse JSON response",
                context={"endpoint": endpoint, "response_body": response.text[:500]},
                original_exception=e,
            )

    def _to_page(self, data: Any, page_number: int, endpoint: str) -> Page:
        if isinstance(data, list):
            records, explicit_next, links = data, None, None
        elif isinstance(data, dict):
            records = data.get("dados", data.get("data", []))
            explicit_next = data.get("has_next")
            links = data.get("links")
        else:
            records, explicit_next, links = None, None, None

        if not isinstance(records, list):
            raise DataFormatError(
                "Page payload has no record list",
                context={"endpoint": endpoint, "page": page_number},
            )

        if not records:
            has_next = False
        elif explicit_next is not None:
            has_next = bool(explicit_next)
        elif len(records) < self.page_size:
            has_next = False
        else:
            has_next = links is None or _has_next_link(links)

        logger.debug(f"{endpoint} page {page_number}: {len(records)} records (has_next={has_next})")
        return Page(records=records, has_next=has_next, cursor=page_number + 1)

    async def _fetch(self, endpoint: str, params: Dict[str, Any], cursor: Optional[Any]) -> Page:
        page_number = int(cursor or 1)
        query = {**params, self.page_param: page_number, self.size_param: self.page_size}
        data = await self._get_json(endpoint, query)
        return self._to_page(data, page_number, endpoint)

    # --------------------------------------------------
    # ResourceAdapter
    # --------------------------------------------------

    async def fetch_entities_page(self, params: Dict[str, Any], cursor: Optional[Any]) -> Page:
        return await self._fetch(self.entities_endpoint, params, cursor)

    async def fetch_page(self, entity_id: str, params: Dict[str, Any], cursor: Optional[Any]) -> Page:
        endpoint = self.records_endpoint.format(entity_id=entity_id)
        return await self._fetch(endpoint, params, cursor)

    def build_params(self, config: RunConfig) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if config.date_start and config.date_end:
            params[self.date_start_param] = config.date_start.isoformat()
            params[self.date_end_param] = config.date_end.isoformat()
        return params

    def extract_record_id(self, record: Dict[str, Any]) -> Optional[str]:
        value = _first_present(record, self.id_field)
        return str(value) if value is not None else None

    def extract_timestamp(self, record: Dict[str, Any]) -> Optional[Any]:
        return _first_present(record, self.timestamp_field)

    def extract_entity_id(self, entity: Dict[str, Any]) -> Optional[str]:
        value = entity.get(self.entity_id_field)
        return str(value) if value is not None else None


def build_client(base_url: Optional[str] = None, timeout: Optional[float] = None) -> httpx.AsyncClient:
    """httpx client configured from settings"""
    return httpx.AsyncClient(
        base_url=base_url or settings.SOURCE_API_BASE_URL,
        timeout=timeout or settings.SOURCE_API_TIMEOUT,
        headers={"Accept": "application/json"},
    )
