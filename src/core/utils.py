"""
Core Utility Functions.

Time handling and small helpers shared by the feed package and the API.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, List, Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime (default feed clock)."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a Supabase/PostgREST timestamp into an aware datetime.

    Accepts ISO-8601 strings (with ``Z`` or an offset) and datetimes.
    Naive values are assumed to be UTC.

    Args:
        value: Raw timestamp value from a record

    Returns:
        Aware datetime, or None if the value is empty or unparseable

    Example:
        >>> parse_timestamp("2024-05-01T10:00:00Z").tzinfo is not None
        True
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def stable_hash(value: Any, length: int = 16) -> str:
    """
    Short, order-independent hash of a JSON-serializable value.

    Used to fold query filters into cache keys so distinct queries
    never collide.
    """
    payload = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()[:length]


def safe_get(obj: Any, *keys: str, default: Any = None) -> Any:
    """
    Safely get nested dictionary values.

    Example:
        >>> safe_get({'a': {'b': 1}}, 'a', 'b')
        1
        >>> safe_get({'a': {}}, 'a', 'b', default=0)
        0
    """
    current = obj
    for key in keys:
        if isinstance(current, dict):
            current = current.get(key)
        elif hasattr(current, key):
            current = getattr(current, key)
        else:
            return default
        if current is None:
            return default
    return current


def coerce_count(value: Any) -> int:
    """Coerce a counter column into a non-negative int (NULL -> 0)."""
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def first_or_none(items: Optional[List[Any]]) -> Optional[Any]:
    """First element of a possibly empty/None list."""
    if not items:
        return None
    return items[0]

