"""
Lazy trade offer expiration.

There is no sweeper job: a PENDING offer whose expiresAt has passed is moved
to EXPIRED by whichever request touches it first, with actor "system".
Both paths are idempotent under concurrency: exactly one EXPIRED event exists
per expired offer no matter how many requests race.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import unit_of_work
from tcgmarket.core.exceptions import InvalidStateError
from tcgmarket.core.prometheus_metrics import trade_offers_expired_total
from tcgmarket.models.base import ensure_utc, utcnow
from tcgmarket.models.trade import (
    SYSTEM_ACTOR,
    TradeEvent,
    TradeEventType,
    TradeOffer,
    TradeOfferStatus,
)
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

EXPIRE = Transition("TradeOffer", "expire", (TradeOfferStatus.PENDING,), TradeOfferStatus.EXPIRED)


def is_past_due(offer: TradeOffer, now: Optional[datetime] = None) -> bool:
    """PENDING in storage but logically EXPIRED."""
    now = now or utcnow()
    return offer.status == TradeOfferStatus.PENDING.value and now > ensure_utc(offer.expires_at)


def _expired_event(offer: TradeOffer) -> TradeEvent:
    return TradeEvent(
        trade_offer_id=offer.id,
        event_type=TradeEventType.EXPIRED.value,
        actor_user_id=SYSTEM_ACTOR,
        metadata_json={"expiresAt": ensure_utc(offer.expires_at).isoformat()},
    )


async def mark_expired_if_needed(session: AsyncSession, offer: TradeOffer) -> TradeOffer:
    """
    Persist the EXPIRED state of one offer if its deadline has passed.

    Returns:
        The offer in its current persisted state
    """
    if not is_past_due(offer):
        return offer

    # Rollback expires loaded instances, so keep the key as a plain value.
    offer_id = offer.id
    try:
        async with unit_of_work(session):
            offer = await apply_transition(
                session, TradeOffer, offer_id, EXPIRE, event=_expired_event
            )
        trade_offers_expired_total.labels(mode="single").inc()
        return offer
    except InvalidStateError:
        # A concurrent request moved the offer first; serve its state.
        logger.debug(f"Trade offer {offer_id} already left PENDING")

    refreshed = (
        await session.execute(
            select(TradeOffer)
            .where(TradeOffer.id == offer_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    return refreshed


async def expire_pending_offers(session: AsyncSession, user_id: str) -> int:
    """
    Expire every overdue PENDING offer where ``user_id`` is a party.

    Returns:
        Number of EXPIRED events written by this call
    """
    now = utcnow()
    candidate_ids = (
        await session.execute(
            select(TradeOffer.id).where(
                TradeOffer.status == TradeOfferStatus.PENDING.value,
                TradeOffer.expires_at < now,
                or_(
                    TradeOffer.creator_user_id == user_id,
                    TradeOffer.receiver_user_id == user_id,
                ),
            )
        )
    ).scalars().all()
    if not candidate_ids:
        return 0

    async with unit_of_work(session):
        await session.execute(
            update(TradeOffer)
            .where(
                TradeOffer.id.in_(candidate_ids),
                TradeOffer.status == TradeOfferStatus.PENDING.value,
            )
            .values(status=TradeOfferStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        expired = (
            await session.execute(
                select(TradeOffer)
                .where(
                    TradeOffer.id.in_(candidate_ids),
                    TradeOffer.status == TradeOfferStatus.EXPIRED.value,
                )
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        already_recorded = set(
            (
                await session.execute(
                    select(TradeEvent.trade_offer_id).where(
                        TradeEvent.trade_offer_id.in_([offer.id for offer in expired]),
                        TradeEvent.event_type == TradeEventType.EXPIRED.value,
                    )
                )
            ).scalars().all()
        )
        created = 0
        for offer in expired:
            if offer.id not in already_recorded:
                session.add(_expired_event(offer))
                created += 1

    if created:
        trade_offers_expired_total.labels(mode="batch").inc(created)
        logger.info(
            f"Expired {created} trade offer(s) for user {user_id}",
            extra={"expired_count": created},
        )
    return created
