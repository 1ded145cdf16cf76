"""
Trade offer lifecycle.

PENDING --accept (receiver)--> ACCEPTED
PENDING --reject (receiver)--> REJECTED
PENDING --cancel (creator)---> CANCELLED
PENDING --expiresAt passes---> EXPIRED (lazy, see trade_expiration)

Accept/reject/cancel check expiration first: an overdue offer is persisted as
EXPIRED and the requested transition fails with a conflict.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import unit_of_work
from tcgmarket.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OfferCounteredError,
    OfferExpiredError,
    ValidationError,
)
from tcgmarket.core.pagination import (
    Page,
    build_page,
    cursor_datetime,
    decode_cursor,
    seek_after,
)
from tcgmarket.core.security import Actor
from tcgmarket.core.validators import validate_expires_in_hours
from tcgmarket.models.base import utcnow
from tcgmarket.models.trade import (
    TradeEvent,
    TradeEventType,
    TradeOffer,
    TradeOfferStatus,
)
from tcgmarket.services import collection, trade_messages
from tcgmarket.services.trade_expiration import (
    expire_pending_offers,
    is_past_due,
    mark_expired_if_needed,
)
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

ACCEPT = Transition("TradeOffer", "accept", (TradeOfferStatus.PENDING,), TradeOfferStatus.ACCEPTED)
REJECT = Transition("TradeOffer", "reject", (TradeOfferStatus.PENDING,), TradeOfferStatus.REJECTED)
CANCEL = Transition("TradeOffer", "cancel", (TradeOfferStatus.PENDING,), TradeOfferStatus.CANCELLED)
# Status stays PENDING; the write stamps countered_at, which ACCEPT requires to be NULL.
COUNTER = Transition("TradeOffer", "counter", (TradeOfferStatus.PENDING,), TradeOfferStatus.PENDING)


@dataclass
class TradeOfferDetail:
    offer: TradeOffer
    events: List[TradeEvent]
    counter_offer_ids: List[str]
    unread_messages: int = 0


def _event(
    event_type: TradeEventType,
    actor: Actor,
    metadata: Optional[Dict[str, Any]] = None,
):
    def build(offer: TradeOffer) -> TradeEvent:
        return TradeEvent(
            trade_offer_id=offer.id,
            event_type=event_type.value,
            actor_user_id=actor.user_id,
            metadata_json=metadata,
        )
    return build


def _is_party(offer: TradeOffer, actor: Actor) -> bool:
    return actor.user_id in (offer.creator_user_id, offer.receiver_user_id)


async def _get_offer(session: AsyncSession, offer_id: str) -> TradeOffer:
    offer = await session.get(TradeOffer, offer_id)
    if offer is None:
        raise NotFoundError("TradeOffer", offer_id)
    return offer


async def _get_for_action(
    session: AsyncSession,
    actor: Actor,
    offer_id: str,
    party: str,
    action: str,
) -> TradeOffer:
    """Load the offer, check the actor holds ``party`` and that it has not expired."""
    offer = await _get_offer(session, offer_id)
    if getattr(offer, f"{party}_user_id") != actor.user_id:
        raise ForbiddenError(f"Only the {party} can {action} this offer")

    if is_past_due(offer):
        await mark_expired_if_needed(session, offer)
        raise OfferExpiredError(offer_id)
    return offer


async def _create_offer_row(
    session: AsyncSession,
    creator_user_id: str,
    receiver_user_id: str,
    creator_items: Dict[str, Any],
    receiver_items: Dict[str, Any],
    expires_in_hours: Optional[int],
    counter_of_offer_id: Optional[str] = None,
) -> TradeOffer:
    if creator_user_id == receiver_user_id:
        raise ValidationError(
            detail="Cannot create a trade offer with yourself",
            field="receiverUserId",
            value=receiver_user_id,
        )
    hours = validate_expires_in_hours(expires_in_hours)
    offer = TradeOffer(
        creator_user_id=creator_user_id,
        receiver_user_id=receiver_user_id,
        creator_items_json=creator_items,
        receiver_items_json=receiver_items,
        status=TradeOfferStatus.PENDING.value,
        expires_at=utcnow() + timedelta(hours=hours),
        counter_of_offer_id=counter_of_offer_id,
    )
    session.add(offer)
    await session.flush()
    return offer


async def create_offer(
    session: AsyncSession,
    actor: Actor,
    receiver_user_id: str,
    creator_items: Dict[str, Any],
    receiver_items: Dict[str, Any],
    expires_in_hours: Optional[int] = None,
) -> TradeOffer:
    """Create a PENDING offer from the actor to ``receiver_user_id``."""
    async with unit_of_work(session):
        offer = await _create_offer_row(
            session,
            actor.user_id,
            receiver_user_id,
            creator_items,
            receiver_items,
            expires_in_hours,
        )
        session.add(_event(TradeEventType.CREATED, actor, {"source": "api"})(offer))

    logger.info(f"Trade offer {offer.id} created", extra={"trade_offer_id": offer.id})
    return offer


async def get_offer(session: AsyncSession, actor: Actor, offer_id: str) -> TradeOfferDetail:
    """
    Fetch one offer with its history, reconciling lazy expiration first.

    Raises:
        NotFoundError: If the offer does not exist
        ForbiddenError: If the actor is not a party
    """
    offer = await _get_offer(session, offer_id)
    if not _is_party(offer, actor):
        raise ForbiddenError("Not a party of this trade")

    offer = await mark_expired_if_needed(session, offer)

    events = (
        await session.execute(
            select(TradeEvent)
            .where(TradeEvent.trade_offer_id == offer_id)
            .order_by(TradeEvent.created_at.asc(), TradeEvent.id.asc())
        )
    ).scalars().all()
    counter_offer_ids = (
        await session.execute(
            select(TradeOffer.id)
            .where(TradeOffer.counter_of_offer_id == offer_id)
            .order_by(TradeOffer.created_at.asc())
        )
    ).scalars().all()
    return TradeOfferDetail(
        offer=offer,
        events=list(events),
        counter_offer_ids=list(counter_offer_ids),
        unread_messages=await trade_messages.unread_count(session, offer_id, actor.user_id),
    )


async def list_offers(
    session: AsyncSession,
    actor: Actor,
    box: str,
    limit: int,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
) -> Page[TradeOffer]:
    """Offers the actor sent or received, newest first."""
    await expire_pending_offers(session, actor.user_id)

    party_column = TradeOffer.creator_user_id if box == "sent" else TradeOffer.receiver_user_id
    stmt = select(TradeOffer).where(party_column == actor.user_id)
    if status:
        stmt = stmt.where(TradeOffer.status == status)

    payload = decode_cursor(cursor, "created_desc")
    if payload:
        stmt = stmt.where(
            seek_after(TradeOffer.created_at, TradeOffer.id, cursor_datetime(payload), payload["id"], True)
        )
    stmt = stmt.order_by(TradeOffer.created_at.desc(), TradeOffer.id.desc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()
    return build_page(rows, limit, "created_desc", lambda offer: offer.created_at)


async def accept_offer(session: AsyncSession, actor: Actor, offer_id: str) -> TradeOffer:
    """
    Receiver accepts; both sides' items change hands in the same unit of work.

    Raises:
        OfferExpiredError, OfferCounteredError, InvalidStateError,
        InsufficientQuantityError (either side lacks the promised cards)
    """
    await _get_for_action(session, actor, offer_id, "receiver", "accept")

    async with unit_of_work(session):
        offer = await apply_transition(
            session,
            TradeOffer,
            offer_id,
            ACCEPT,
            event=_event(TradeEventType.ACCEPTED, actor),
            where=(TradeOffer.countered_at.is_(None),),
            blocked=lambda: OfferCounteredError(offer_id),
        )
        await collection.transfer(
            session,
            offer.creator_user_id,
            offer.receiver_user_id,
            (offer.creator_items_json or {}).get("items", []),
        )
        await collection.transfer(
            session,
            offer.receiver_user_id,
            offer.creator_user_id,
            (offer.receiver_items_json or {}).get("items", []),
        )
        await collection.purge_empty(session, [offer.creator_user_id, offer.receiver_user_id])
    return offer


async def reject_offer(session: AsyncSession, actor: Actor, offer_id: str) -> TradeOffer:
    await _get_for_action(session, actor, offer_id, "receiver", "reject")
    async with unit_of_work(session):
        offer = await apply_transition(
            session,
            TradeOffer,
            offer_id,
            REJECT,
            event=_event(TradeEventType.REJECTED, actor),
        )
    return offer


async def cancel_offer(session: AsyncSession, actor: Actor, offer_id: str) -> TradeOffer:
    await _get_for_action(session, actor, offer_id, "creator", "cancel")
    async with unit_of_work(session):
        offer = await apply_transition(
            session,
            TradeOffer,
            offer_id,
            CANCEL,
            event=_event(TradeEventType.CANCELLED, actor),
        )
    return offer


async def counter_offer(
    session: AsyncSession,
    actor: Actor,
    offer_id: str,
    creator_items: Dict[str, Any],
    receiver_items: Dict[str, Any],
    expires_in_hours: Optional[int] = None,
) -> TradeOffer:
    """
    Receiver answers with a new offer in the opposite direction.

    The original stays PENDING but records a COUNTERED event and can no
    longer be accepted.
    """
    original = await _get_for_action(session, actor, offer_id, "receiver", "counter")
    if not COUNTER.allows(original.status):
        raise InvalidStateError("TradeOffer", offer_id, original.status, COUNTER.name)

    original_creator = original.creator_user_id
    async with unit_of_work(session):
        counter = await _create_offer_row(
            session,
            actor.user_id,
            original_creator,
            creator_items,
            receiver_items,
            expires_in_hours,
            counter_of_offer_id=offer_id,
        )
        session.add(
            _event(
                TradeEventType.CREATED,
                actor,
                {"source": "api", "counterOffer": True, "counterOfOfferId": offer_id},
            )(counter)
        )
        await apply_transition(
            session,
            TradeOffer,
            offer_id,
            COUNTER,
            values={"countered_at": utcnow()},
            event=_event(TradeEventType.COUNTERED, actor, {"counterOfferId": counter.id}),
        )

    logger.info(
        f"Trade offer {offer_id} countered by {counter.id}",
        extra={"trade_offer_id": offer_id, "counter_offer_id": counter.id},
    )
    return counter
