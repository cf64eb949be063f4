"""
Remote store contract.

The feed engine never talks to a database directly. It depends on this
small async contract (list / insert / update / upsert / subscribe) which
SupabaseStore implements for production and tests implement in memory.

Filters are declarative so the same definition can be pushed to the
server as a query and re-evaluated locally against a realtime record
(e.g. "did this promotion just become active?").
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence


EQ = "eq"
NEQ = "neq"
GT = "gt"
LT = "lt"
NOT_NULL = "not_null"
NOT_IN = "not_in"

FILTER_OPS = frozenset({EQ, NEQ, GT, LT, NOT_NULL, NOT_IN})


@dataclass(frozen=True)
class QueryFilter:
    """A single column predicate."""
    column: str
    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op: {self.op}")

    def matches(self, record: Dict[str, Any]) -> bool:
        """Evaluate the predicate against a plain record."""
        actual = record.get(self.column)
        if self.op == EQ:
            return actual == self.value
        if self.op == NEQ:
            return actual != self.value
        if self.op == NOT_NULL:
            return actual is not None
        if self.op == NOT_IN:
            return actual not in set(self.value or ())
        if actual is None:
            return False
        if self.op == GT:
            return actual > self.value
        return actual < self.value

    def to_dict(self) -> Dict[str, Any]:
        value = sorted(self.value) if self.op == NOT_IN else self.value
        return {"column": self.column, "op": self.op, "value": value}


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = True


@dataclass
class ListResult:
    """Result of a list query. next_cursor is None when nothing follows."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


ChangeHandler = Callable[[Dict[str, Any]], None]
ErrorHandler = Callable[[BaseException], None]
Unsubscribe = Callable[[], Awaitable[None]]


def matches_all(filters: Sequence[QueryFilter], record: Dict[str, Any]) -> bool:
    return all(f.matches(record) for f in filters)


class RemoteStore(Protocol):
    """Async contract over the hosted backend."""

    async def list_records(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Sequence[OrderBy] = (),
        cursor: Optional[str] = None,
        limit: int = 10,
    ) -> ListResult:
        ...

    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        ...

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        ...

    async def upsert(
        self,
        collection: str,
        record: Dict[str, Any],
        on_conflict: Optional[str] = None,
    ) -> None:
        ...

    async def subscribe(
        self,
        collection: str,
        on_event: ChangeHandler,
        on_error: ErrorHandler,
        filter: Optional[str] = None,
    ) -> Unsubscribe:
        """
        Subscribe to change notifications of a collection.

        ``on_event`` receives raw payloads with ``type``, ``record`` and
        ``old_record`` keys. ``on_error`` is called when the channel drops.
        """
        ...
