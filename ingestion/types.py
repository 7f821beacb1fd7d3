"""
Value types shared by the fetch, reconcile and persist layers
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

UNKNOWN_BUCKET = "unknown"


@dataclass(frozen=True)
class Page:
    """One page returned by a fetch capability"""
    records: List[Dict[str, Any]]
    has_next: bool
    cursor: Optional[Any] = None


@dataclass(frozen=True)
class PagedRecords:
    """All records of one paginated fetch, in page order"""
    records: List[Dict[str, Any]]
    total_pages: int
    truncated: bool = False


@dataclass(frozen=True)
class WorkItem:
    """
    A unit of dispatchable work.

    fetch is a zero-argument coroutine function returning either a list of
    records or a PagedRecords.
    """
    item_id: str
    fetch: Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one WorkItem; exactly one per dispatched item"""
    item_id: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    total_pages: Optional[int] = None
    error: Optional[BaseException] = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class DispatchProgress:
    completed: int
    total: int
    succeeded: int

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return int(self.completed * 100 / self.total)


@dataclass(frozen=True)
class Record:
    """
    A normalized record.

    payload is the raw record as received; id and bucket_key are the only
    fields the engine reasons about.
    """
    id: str
    bucket_key: str
    payload: Dict[str, Any]


@dataclass(frozen=True)
class BucketState:
    """Records of one bucket keyed by id, in stable order"""
    key: str
    records: Dict[str, Record] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def ids(self) -> List[str]:
        return list(self.records)

    def payloads(self) -> List[Dict[str, Any]]:
        return [r.payload for r in self.records.values()]


class WriteKind(str, enum.Enum):
    SET = "set"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOperation:
    destination_key: str
    payload: Optional[Dict[str, Any]] = None
    kind: WriteKind = WriteKind.SET

    def __post_init__(self):
        if self.kind == WriteKind.SET and self.payload is None:
            raise ValueError(f"SET operation for '{self.destination_key}' requires a payload")
