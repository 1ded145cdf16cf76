"""
Handover verification.

A handover belongs to exactly one listing or trade offer and waits in
PENDING_VERIFICATION until an admin verifies or rejects it. At most one
handover per parent can be in flight; the partial unique indexes on the
handovers table enforce that, and the violation is reported as a conflict.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import is_unique_violation, unit_of_work
from tcgmarket.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tcgmarket.core.pagination import MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.models.base import utcnow
from tcgmarket.models.marketplace import (
    Handover,
    HandoverEvent,
    HandoverEventType,
    HandoverStatus,
    Listing,
)
from tcgmarket.models.trade import TradeOffer
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

VERIFY = Transition(
    "Handover", "verify", (HandoverStatus.PENDING_VERIFICATION,), HandoverStatus.VERIFIED
)
REJECT = Transition(
    "Handover", "reject", (HandoverStatus.PENDING_VERIFICATION,), HandoverStatus.REJECTED
)


def _event(event_type: HandoverEventType, actor: Actor, metadata=None):
    def build(handover: Handover) -> HandoverEvent:
        return HandoverEvent(
            handover_id=handover.id,
            event_type=event_type.value,
            actor_user_id=actor.user_id,
            metadata_json=metadata,
        )
    return build


async def _check_parent(
    session: AsyncSession,
    actor: Actor,
    listing_id: Optional[str],
    trade_offer_id: Optional[str],
) -> None:
    if listing_id is not None:
        listing = await session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing", listing_id)
        if listing.user_id != actor.user_id:
            raise ForbiddenError("Only the listing owner can request a handover")
        return

    offer = await session.get(TradeOffer, trade_offer_id)
    if offer is None:
        raise NotFoundError("TradeOffer", trade_offer_id)
    if actor.user_id not in (offer.creator_user_id, offer.receiver_user_id):
        raise ForbiddenError("Not a party of this trade")


async def create_handover(
    session: AsyncSession,
    actor: Actor,
    listing_id: Optional[str] = None,
    trade_offer_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Handover:
    """
    Request verification of a physical handover.

    Raises:
        ValidationError: Unless exactly one of listing_id / trade_offer_id is given
        NotFoundError, ForbiddenError: Parent missing or actor not a party
        ConflictError: The parent already has a handover awaiting verification
    """
    if (listing_id is None) == (trade_offer_id is None):
        raise ValidationError(
            detail="Exactly one of listingId or tradeOfferId is required",
            field="listingId",
        )

    await _check_parent(session, actor, listing_id, trade_offer_id)

    handover = Handover(
        listing_id=listing_id,
        trade_offer_id=trade_offer_id,
        requested_by_user_id=actor.user_id,
        status=HandoverStatus.PENDING_VERIFICATION.value,
        notes=notes,
    )
    try:
        async with unit_of_work(session):
            session.add(handover)
            await session.flush()
            session.add(_event(HandoverEventType.REQUESTED, actor)(handover))
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        parent = {"listing_id": listing_id, "trade_offer_id": trade_offer_id}
        logger.info("Handover already pending", extra=parent)
        raise ConflictError(
            "A handover is already pending verification for this item",
            context=parent,
        ) from e

    logger.info(f"Handover {handover.id} requested", extra={"handover_id": handover.id})
    return handover


async def _decide(
    session: AsyncSession,
    actor: Actor,
    handover_id: str,
    transition: Transition,
    event_type: HandoverEventType,
) -> Handover:
    async with unit_of_work(session):
        handover = await apply_transition(
            session,
            Handover,
            handover_id,
            transition,
            values={"verified_by_user_id": actor.user_id, "verified_at": utcnow()},
            event=_event(event_type, actor),
        )
    return handover


async def verify_handover(session: AsyncSession, actor: Actor, handover_id: str) -> Handover:
    return await _decide(session, actor, handover_id, VERIFY, HandoverEventType.VERIFIED)


async def reject_handover(session: AsyncSession, actor: Actor, handover_id: str) -> Handover:
    return await _decide(session, actor, handover_id, REJECT, HandoverEventType.REJECTED)


async def list_handovers(
    session: AsyncSession,
    actor: Actor,
    mine: bool = True,
    status: Optional[str] = None,
) -> List[Handover]:
    """Newest handovers first; callers gate ``mine=False`` (all users) to admins."""
    stmt = select(Handover)
    if mine:
        stmt = stmt.where(Handover.requested_by_user_id == actor.user_id)
    if status:
        stmt = stmt.where(Handover.status == status)
    stmt = stmt.order_by(Handover.created_at.desc(), Handover.id.desc()).limit(MAX_PAGE_SIZE)
    return list((await session.execute(stmt)).scalars().all())
