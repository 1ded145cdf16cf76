"""
User card collections.

Quantities only move through conditional SQL (``quantity >= n`` in the WHERE
clause) or dialect upserts, so two concurrent sales of the last copy cannot
both succeed and no row ever goes negative.
"""
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import dialect_insert, unit_of_work
from tcgmarket.core.exceptions import InsufficientQuantityError, NotFoundError
from tcgmarket.core.pagination import (
    Page,
    build_page,
    cursor_datetime,
    decode_cursor,
    seek_after,
)
from tcgmarket.models.base import utcnow
from tcgmarket.models.inventory import CollectionItem

logger = logging.getLogger(__name__)

CardKey = Tuple[str, str, str]  # (card_id, language, condition)

_UNIQUE_COLUMNS = ["user_id", "card_id", "language", "condition"]


def aggregate_items(items: Iterable[Dict[str, Any]]) -> "OrderedDict[CardKey, int]":
    """Sum quantities of trade items that target the same collection row."""
    totals: "OrderedDict[CardKey, int]" = OrderedDict()
    for item in items:
        key = (item["cardId"], item["language"], item["condition"])
        totals[key] = totals.get(key, 0) + int(item["quantity"])
    return totals


async def decrement(
    session: AsyncSession,
    user_id: str,
    card_id: str,
    language: str,
    condition: str,
    quantity: int,
) -> None:
    """
    Remove ``quantity`` copies from the user's row in one conditional UPDATE.

    Raises:
        InsufficientQuantityError: If the row is missing or holds fewer copies
    """
    stmt = (
        update(CollectionItem)
        .where(
            CollectionItem.user_id == user_id,
            CollectionItem.card_id == card_id,
            CollectionItem.language == language,
            CollectionItem.condition == condition,
            CollectionItem.quantity >= quantity,
        )
        .values(quantity=CollectionItem.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        raise InsufficientQuantityError(
            user_id=user_id,
            card_id=card_id,
            required=quantity,
            context={"language": language, "condition": condition},
        )


async def increment(
    session: AsyncSession,
    user_id: str,
    card_id: str,
    language: str,
    condition: str,
    quantity: int,
) -> None:
    """Add ``quantity`` copies, creating the row if the user has none yet."""
    insert = dialect_insert(session)
    stmt = insert(CollectionItem).values(
        user_id=user_id,
        card_id=card_id,
        language=language,
        condition=condition,
        quantity=quantity,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_UNIQUE_COLUMNS,
        set_={
            "quantity": CollectionItem.quantity + stmt.excluded.quantity,
            "updated_at": utcnow(),
        },
    )
    await session.execute(stmt)


async def purge_empty(session: AsyncSession, user_ids: Iterable[str]) -> None:
    """Delete rows that reached zero so they never show up as inventory."""
    await session.execute(
        delete(CollectionItem)
        .where(CollectionItem.user_id.in_(list(user_ids)), CollectionItem.quantity <= 0)
        .execution_options(synchronize_session=False)
    )


async def transfer(
    session: AsyncSession,
    from_user_id: str,
    to_user_id: str,
    items: Iterable[Dict[str, Any]],
) -> None:
    """
    Move trade items between two collections inside the caller's unit of work.

    Raises:
        InsufficientQuantityError: If the giver lacks any of the items
    """
    for (card_id, language, condition), quantity in aggregate_items(items).items():
        await decrement(session, from_user_id, card_id, language, condition, quantity)
        await increment(session, to_user_id, card_id, language, condition, quantity)


async def list_items(
    session: AsyncSession,
    user_id: str,
    limit: int,
    cursor: Optional[str] = None,
    card_id: Optional[str] = None,
    language: Optional[str] = None,
) -> Page[CollectionItem]:
    """Page through a user's collection, newest rows first."""
    stmt = select(CollectionItem).where(
        CollectionItem.user_id == user_id,
        CollectionItem.quantity > 0,
    )
    if card_id:
        stmt = stmt.where(CollectionItem.card_id == card_id)
    if language:
        stmt = stmt.where(CollectionItem.language == language)

    payload = decode_cursor(cursor, "created_desc")
    if payload:
        stmt = stmt.where(
            seek_after(
                CollectionItem.created_at,
                CollectionItem.id,
                cursor_datetime(payload),
                payload["id"],
                descending=True,
            )
        )
    stmt = stmt.order_by(CollectionItem.created_at.desc(), CollectionItem.id.desc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()
    return build_page(rows, limit, "created_desc", lambda item: item.created_at)


async def upsert_item(
    session: AsyncSession,
    user_id: str,
    card_id: str,
    language: str,
    condition: str,
    quantity: int,
    card_name: Optional[str] = None,
    set_code: Optional[str] = None,
    is_public: bool = True,
) -> CollectionItem:
    """Set the on-hand quantity of one card, creating the row if needed."""
    insert = dialect_insert(session)
    stmt = insert(CollectionItem).values(
        user_id=user_id,
        card_id=card_id,
        language=language,
        condition=condition,
        quantity=quantity,
        card_name=card_name,
        set_code=set_code,
        is_public=is_public,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_UNIQUE_COLUMNS,
        set_={
            "quantity": stmt.excluded.quantity,
            "card_name": stmt.excluded.card_name,
            "set_code": stmt.excluded.set_code,
            "is_public": stmt.excluded.is_public,
            "updated_at": utcnow(),
        },
    )
    async with unit_of_work(session):
        await session.execute(stmt)

    item = (
        await session.execute(
            select(CollectionItem)
            .where(
                CollectionItem.user_id == user_id,
                CollectionItem.card_id == card_id,
                CollectionItem.language == language,
                CollectionItem.condition == condition,
            )
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    logger.info(
        f"Collection item {card_id} set to {quantity} for user {user_id}",
        extra={"card_id": card_id, "quantity": quantity},
    )
    return item


async def delete_item(
    session: AsyncSession,
    user_id: str,
    card_id: str,
    language: str,
    condition: str,
) -> None:
    """
    Raises:
        NotFoundError: If the user holds no such row
    """
    async with unit_of_work(session):
        result = await session.execute(
            delete(CollectionItem)
            .where(
                CollectionItem.user_id == user_id,
                CollectionItem.card_id == card_id,
                CollectionItem.language == language,
                CollectionItem.condition == condition,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("CollectionItem", f"{card_id}/{language}/{condition}")
