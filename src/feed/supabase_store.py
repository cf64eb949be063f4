"""
RemoteStore implementation over the Supabase async client.

- list_records: PostgREST select with filters, ordering and a range window.
  Cursors are opaque base64 offset cursors.
- insert / update / upsert: plain table writes.
- subscribe: a Realtime ``postgres_changes`` channel per collection.
  Payloads are normalized to ``{"type", "record", "old_record"}``.
"""

import base64
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from supabase import AsyncClient

from core.logging import LoggerMixin
from feed.errors import SubscriptionError
from feed.store import (
    EQ,
    GT,
    LT,
    NEQ,
    NOT_IN,
    NOT_NULL,
    ChangeHandler,
    ErrorHandler,
    ListResult,
    OrderBy,
    QueryFilter,
    Unsubscribe,
)


_CHANNEL_FAILURE_STATES = frozenset({"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"})


@dataclass
class OffsetCursor:
    """Opaque pagination cursor: the row offset of the next page."""
    offset: int

    def encode(self) -> str:
        json_str = json.dumps({"offset": self.offset})
        return base64.b64encode(json_str.encode("utf-8")).decode("utf-8")

    @classmethod
    def decode(cls, encoded: Optional[str]) -> "OffsetCursor":
        """Decode a cursor. Missing or invalid cursors start at offset 0."""
        if not encoded:
            return cls(offset=0)
        try:
            data = json.loads(base64.b64decode(encoded.encode("utf-8")).decode("utf-8"))
            return cls(offset=max(0, int(data.get("offset", 0))))
        except (ValueError, TypeError, AttributeError):
            return cls(offset=0)


def _format_value(value: Any) -> Any:
    # PostgREST expects lowercase boolean literals
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def apply_filter(query, query_filter: QueryFilter):
    """Translate one QueryFilter into PostgREST builder calls."""
    column, op, value = query_filter.column, query_filter.op, query_filter.value
    if op == EQ:
        return query.eq(column, _format_value(value))
    if op == NEQ:
        return query.neq(column, _format_value(value))
    if op == GT:
        return query.gt(column, value)
    if op == LT:
        return query.lt(column, value)
    if op == NOT_NULL:
        return query.not_.is_(column, "null")
    if op == NOT_IN:
        return query.not_.in_(column, list(value or ()))
    raise ValueError(f"Unsupported filter op: {op}")


def normalize_change_payload(payload: Any) -> Dict[str, Any]:
    """Flatten the realtime payload shapes into type/record/old_record."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return {}
    return {
        "type": data.get("type") or data.get("eventType"),
        "record": data.get("record") or data.get("new") or {},
        "old_record": data.get("old_record") or data.get("old") or {},
    }


class SupabaseStore(LoggerMixin):
    """Feed store backed by Supabase (PostgREST + Realtime)."""

    def __init__(self, client: AsyncClient, schema: str = "public"):
        self._client = client
        self._schema = schema

    async def list_records(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        order_by: Sequence[OrderBy] = (),
        cursor: Optional[str] = None,
        limit: int = 10,
    ) -> ListResult:
        offset = OffsetCursor.decode(cursor).offset
        query = self._client.table(collection).select("*")
        for query_filter in filters:
            query = apply_filter(query, query_filter)
        for order in order_by:
            query = query.order(order.column, desc=order.descending)
        query = query.range(offset, offset + limit - 1)

        response = await query.execute()
        rows = list(response.data or [])
        next_cursor = OffsetCursor(offset + len(rows)).encode() if len(rows) >= limit else None

        self.logger.debug(
            "Listed records",
            collection=collection,
            offset=offset,
            limit=limit,
            returned=len(rows),
        )
        return ListResult(items=rows, next_cursor=next_cursor)

    async def insert(self, collection: str, record: Dict[str, Any]) -> str:
        response = await self._client.table(collection).insert(record).execute()
        rows = response.data or []
        return str(rows[0].get("id", "")) if rows else ""

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        await self._client.table(collection).update(patch).eq("id", record_id).execute()

    async def upsert(
        self,
        collection: str,
        record: Dict[str, Any],
        on_conflict: Optional[str] = None,
    ) -> None:
        if on_conflict:
            await self._client.table(collection).upsert(record, on_conflict=on_conflict).execute()
        else:
            await self._client.table(collection).upsert(record).execute()

    async def subscribe(
        self,
        collection: str,
        on_event: ChangeHandler,
        on_error: ErrorHandler,
        filter: Optional[str] = None,
    ) -> Unsubscribe:
        """Open a postgres_changes channel for one table."""
        channel = self._client.channel(f"feed-{collection}-{uuid.uuid4().hex[:8]}")
        closing = False

        def handle_change(payload: Any) -> None:
            normalized = normalize_change_payload(payload)
            if normalized.get("type"):
                on_event(normalized)

        def handle_state(state: Any, error: Optional[Exception] = None) -> None:
            name = str(getattr(state, "value", state))
            if name in _CHANNEL_FAILURE_STATES and not closing:
                on_error(SubscriptionError(collection, error))

        channel.on_postgres_changes(
            "*",
            schema=self._schema,
            table=collection,
            filter=filter,
            callback=handle_change,
        )
        await channel.subscribe(handle_state)

        async def unsubscribe() -> None:
            nonlocal closing
            closing = True
            await self._client.remove_channel(channel)

        return unsubscribe
