"""
Keyset pagination with opaque cursors.

A cursor is base64url(JSON) of the last row's sort key and id, plus the sort
it was produced for; a cursor presented with a different sort is rejected.
"""
import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import and_, or_

from tcgmarket.core.exceptions import InvalidCursorError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_cursor: Optional[str]


def encode_cursor(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_cursor(cursor: Optional[str], sort: str) -> Optional[Dict[str, Any]]:
    """
    Decode a cursor produced for ``sort``.

    Returns:
        The payload, or None when no cursor was given

    Raises:
        InvalidCursorError: If the cursor is malformed or was made for another sort
    """
    if not cursor:
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (ValueError, binascii.Error, UnicodeError) as e:
        raise InvalidCursorError() from e
    if not isinstance(payload, dict) or "id" not in payload or "v" not in payload:
        raise InvalidCursorError()
    if payload.get("sort") != sort:
        raise InvalidCursorError("Cursor does not match the requested sort")
    return payload


def cursor_datetime(payload: Dict[str, Any]) -> datetime:
    try:
        return datetime.fromisoformat(payload["v"])
    except (TypeError, ValueError) as e:
        raise InvalidCursorError() from e


def cursor_int(payload: Dict[str, Any]) -> int:
    value = payload["v"]
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCursorError()
    return value


def seek_after(sort_column, id_column, value: Any, last_id: str, descending: bool):
    """WHERE clause selecting rows strictly after (value, last_id) in (sort, id) order."""
    if descending:
        return or_(sort_column < value, and_(sort_column == value, id_column < last_id))
    return or_(sort_column > value, and_(sort_column == value, id_column > last_id))


def build_page(
    rows: Sequence[T],
    limit: int,
    sort: str,
    sort_value: Callable[[T], Any],
) -> Page[T]:
    """
    Trim a ``limit + 1`` fetch to ``limit`` items and derive the next cursor.

    Args:
        rows: Rows fetched with ``.limit(limit + 1)``
        limit: Page size
        sort: Sort name embedded in the cursor
        sort_value: Extracts the sort key from a row
    """
    items = list(rows[:limit])
    next_cursor = None
    if len(rows) > limit and items:
        last = items[-1]
        value = sort_value(last)
        if isinstance(value, datetime):
            value = value.isoformat()
        next_cursor = encode_cursor({"sort": sort, "v": value, "id": last.id})
    return Page(items=items, next_cursor=next_cursor)
