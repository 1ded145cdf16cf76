"""
Unit tests for cursor encoding and page trimming.
"""
import base64
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from tcgmarket.core.exceptions import InvalidCursorError
from tcgmarket.core.pagination import (
    build_page,
    cursor_datetime,
    cursor_int,
    decode_cursor,
    encode_cursor,
)


@dataclass
class Row:
    id: str
    created_at: datetime


def test_decode_cursor_none():
    assert decode_cursor(None, "created_desc") is None
    assert decode_cursor("", "created_desc") is None


def test_cursor_is_urlsafe_without_padding():
    cursor = encode_cursor({"sort": "price_asc", "v": 100, "id": "abc"})
    assert "=" not in cursor
    assert decode_cursor(cursor, "price_asc") == {"sort": "price_asc", "v": 100, "id": "abc"}


@pytest.mark.parametrize(
    "cursor",
    [
        "not-base64!!",
        base64.urlsafe_b64encode(b"not json").decode(),
        base64.urlsafe_b64encode(b"[1, 2]").decode(),
        base64.urlsafe_b64encode(b'{"sort": "created_desc"}').decode(),
    ],
)
def test_decode_cursor_rejects_malformed(cursor):
    with pytest.raises(InvalidCursorError) as exc_info:
        decode_cursor(cursor, "created_desc")
    assert exc_info.value.error_code == "INVALID_CURSOR"
    assert exc_info.value.status_code == 400


def test_decode_cursor_rejects_other_sort():
    cursor = encode_cursor({"sort": "price_asc", "v": 100, "id": "abc"})
    with pytest.raises(InvalidCursorError):
        decode_cursor(cursor, "price_desc")


def test_cursor_value_types():
    assert cursor_int({"v": 5}) == 5
    with pytest.raises(InvalidCursorError):
        cursor_int({"v": "5"})
    with pytest.raises(InvalidCursorError):
        cursor_int({"v": True})
    with pytest.raises(InvalidCursorError):
        cursor_datetime({"v": "yesterday"})


def test_build_page_emits_cursor_only_when_more_rows():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    rows = [Row(id=str(i), created_at=now) for i in range(3)]

    page = build_page(rows, 2, "created_desc", lambda row: row.created_at)
    assert [row.id for row in page.items] == ["0", "1"]
    payload = decode_cursor(page.next_cursor, "created_desc")
    assert payload["id"] == "1"
    assert cursor_datetime(payload) == now

    last_page = build_page(rows[:2], 2, "created_desc", lambda row: row.created_at)
    assert last_page.next_cursor is None
