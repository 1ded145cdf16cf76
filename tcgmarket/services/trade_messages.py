"""
Message threads on trade offers.

Only the two parties can post or read, and only while the offer is PENDING or
ACCEPTED. Expiration is reconciled first, so an overdue offer is persisted as
EXPIRED and the call fails with OFFER_EXPIRED.

Each party has a read marker (``TradeReadState``) that moves to the newest
message whenever they post, page through the thread or mark it read.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import dialect_insert, unit_of_work
from tcgmarket.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OfferExpiredError,
)
from tcgmarket.core.pagination import (
    Page,
    build_page,
    cursor_datetime,
    decode_cursor,
    seek_after,
)
from tcgmarket.core.security import Actor
from tcgmarket.models.base import utcnow
from tcgmarket.models.trade import (
    TradeMessage,
    TradeOffer,
    TradeOfferStatus,
    TradeReadState,
)
from tcgmarket.services.trade_expiration import mark_expired_if_needed

logger = logging.getLogger(__name__)

THREAD_STATES = (TradeOfferStatus.PENDING.value, TradeOfferStatus.ACCEPTED.value)


def _check_thread_state(offer_id: str, status: str, action: str) -> None:
    if status == TradeOfferStatus.EXPIRED.value:
        raise OfferExpiredError(offer_id, error_code="OFFER_EXPIRED")
    if status not in THREAD_STATES:
        raise InvalidStateError("TradeOffer", offer_id, status, action)


async def _open_thread(session: AsyncSession, actor: Actor, offer_id: str, action: str) -> TradeOffer:
    offer = await session.get(TradeOffer, offer_id)
    if offer is None:
        raise NotFoundError("TradeOffer", offer_id)
    if actor.user_id not in (offer.creator_user_id, offer.receiver_user_id):
        raise ForbiddenError(f"Only the creator or receiver can {action} on this offer")

    offer = await mark_expired_if_needed(session, offer)
    _check_thread_state(offer_id, offer.status, action)
    return offer


async def _latest_message_at(session: AsyncSession, offer_id: str) -> Optional[datetime]:
    return (
        await session.execute(
            select(func.max(TradeMessage.created_at)).where(TradeMessage.trade_offer_id == offer_id)
        )
    ).scalar_one_or_none()


async def _move_read_marker(
    session: AsyncSession,
    offer_id: str,
    user_id: str,
    last_read_at: datetime,
) -> None:
    insert = dialect_insert(session)
    stmt = insert(TradeReadState).values(
        trade_offer_id=offer_id,
        user_id=user_id,
        last_read_at=last_read_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["trade_offer_id", "user_id"],
        set_={"last_read_at": stmt.excluded.last_read_at, "updated_at": utcnow()},
    )
    await session.execute(stmt)


async def post_message(session: AsyncSession, actor: Actor, offer_id: str, body: str) -> TradeMessage:
    """
    Append a message to the offer's thread.

    Raises:
        NotFoundError, ForbiddenError (not a party),
        OfferExpiredError, InvalidStateError (REJECTED or CANCELLED)
    """
    await _open_thread(session, actor, offer_id, "send messages")

    async with unit_of_work(session):
        # Row lock on PostgreSQL so a concurrent reject/cancel cannot slip in.
        status = (
            await session.execute(
                select(TradeOffer.status).where(TradeOffer.id == offer_id).with_for_update()
            )
        ).scalar_one()
        _check_thread_state(offer_id, status, "send messages")

        message = TradeMessage(trade_offer_id=offer_id, sender_user_id=actor.user_id, body=body)
        session.add(message)
        await session.flush()
        await _move_read_marker(session, offer_id, actor.user_id, message.created_at)

    logger.info(
        f"Message {message.id} posted on trade offer {offer_id}",
        extra={"trade_offer_id": offer_id, "message_id": message.id},
    )
    return message


async def list_messages(
    session: AsyncSession,
    actor: Actor,
    offer_id: str,
    limit: int,
    cursor: Optional[str] = None,
) -> Page[TradeMessage]:
    """Page through the thread oldest first; reading marks the thread as read."""
    await _open_thread(session, actor, offer_id, "read messages")

    stmt = select(TradeMessage).where(TradeMessage.trade_offer_id == offer_id)
    payload = decode_cursor(cursor, "created_asc")
    if payload:
        stmt = stmt.where(
            seek_after(TradeMessage.created_at, TradeMessage.id, cursor_datetime(payload), payload["id"], False)
        )
    stmt = stmt.order_by(TradeMessage.created_at.asc(), TradeMessage.id.asc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()

    async with unit_of_work(session):
        latest = await _latest_message_at(session, offer_id)
        await _move_read_marker(session, offer_id, actor.user_id, latest or utcnow())
    return build_page(rows, limit, "created_asc", lambda message: message.created_at)


async def mark_read(session: AsyncSession, actor: Actor, offer_id: str) -> TradeReadState:
    """Move the actor's read marker to the newest message of the thread."""
    await _open_thread(session, actor, offer_id, "mark as read")

    async with unit_of_work(session):
        latest = await _latest_message_at(session, offer_id)
        await _move_read_marker(session, offer_id, actor.user_id, latest or utcnow())

    return (
        await session.execute(
            select(TradeReadState)
            .where(TradeReadState.trade_offer_id == offer_id, TradeReadState.user_id == actor.user_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


async def unread_count(session: AsyncSession, offer_id: str, user_id: str) -> int:
    """Messages from the other party newer than ``user_id``'s read marker."""
    last_read_at = (
        await session.execute(
            select(TradeReadState.last_read_at).where(
                TradeReadState.trade_offer_id == offer_id,
                TradeReadState.user_id == user_id,
            )
        )
    ).scalar_one_or_none()

    stmt = select(func.count(TradeMessage.id)).where(
        TradeMessage.trade_offer_id == offer_id,
        TradeMessage.sender_user_id != user_id,
    )
    if last_read_at is not None:
        stmt = stmt.where(TradeMessage.created_at > last_read_at)
    return (await session.execute(stmt)).scalar_one()
