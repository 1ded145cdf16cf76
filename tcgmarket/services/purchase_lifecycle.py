"""
Purchase orders on listings.

PENDING --complete (seller)---------> COMPLETED, listing PUBLISHED -> SOLD
PENDING --cancel (buyer or seller)---> CANCELLED
PENDING --another order completed---> FAILED

Buying snapshots the listing price; a buyer can hold one PENDING order per
listing, which the partial unique index on purchase_orders enforces.
Completing an order sells the listing in the same unit of work, so when
several orders race for one listing only the first completion goes through.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import is_unique_violation, unit_of_work
from tcgmarket.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
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
from tcgmarket.models.marketplace import (
    Listing,
    ListingEvent,
    ListingEventType,
    ListingStatus,
    PurchaseOrder,
    PurchaseOrderEvent,
    PurchaseOrderEventType,
    PurchaseOrderStatus,
)
from tcgmarket.services import collection
from tcgmarket.services.listing_lifecycle import MARK_SOLD
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

COMPLETE = Transition(
    "PurchaseOrder", "complete", (PurchaseOrderStatus.PENDING,), PurchaseOrderStatus.COMPLETED
)
CANCEL = Transition(
    "PurchaseOrder", "cancel", (PurchaseOrderStatus.PENDING,), PurchaseOrderStatus.CANCELLED
)
FAIL = Transition(
    "PurchaseOrder", "fail", (PurchaseOrderStatus.PENDING,), PurchaseOrderStatus.FAILED
)


def _event(
    event_type: PurchaseOrderEventType,
    actor: Actor,
    metadata: Optional[Dict[str, Any]] = None,
):
    def build(order: PurchaseOrder) -> PurchaseOrderEvent:
        return PurchaseOrderEvent(
            purchase_order_id=order.id,
            event_type=event_type.value,
            actor_user_id=actor.user_id,
            metadata_json=metadata,
        )
    return build


async def _get_order(session: AsyncSession, order_id: str) -> PurchaseOrder:
    order = await session.get(PurchaseOrder, order_id)
    if order is None:
        raise NotFoundError("PurchaseOrder", order_id)
    return order


async def buy_listing(session: AsyncSession, actor: Actor, listing_id: str) -> PurchaseOrder:
    """
    Place a PENDING order for a published listing.

    Raises:
        NotFoundError: Listing missing or hidden from the buyer
        InvalidStateError: Listing is not PUBLISHED
        ForbiddenError: Buyer owns the listing
        ConflictError: Buyer already has a PENDING order for this listing
    """
    listing = await session.get(Listing, listing_id)
    if listing is None or (listing.is_hidden and listing.user_id != actor.user_id):
        raise NotFoundError("Listing", listing_id)
    if listing.status != ListingStatus.PUBLISHED.value:
        raise InvalidStateError("Listing", listing_id, listing.status, "buy")
    if listing.user_id == actor.user_id:
        raise ForbiddenError("Cannot buy your own listing", context={"listing_id": listing_id})

    try:
        async with unit_of_work(session):
            # Re-read under a row lock on PostgreSQL; the price is snapshotted from this read.
            current = (
                await session.execute(
                    select(Listing.status, Listing.price_cents)
                    .where(Listing.id == listing_id)
                    .with_for_update()
                )
            ).one()
            if current.status != ListingStatus.PUBLISHED.value:
                raise InvalidStateError("Listing", listing_id, current.status, "buy")

            order = PurchaseOrder(
                listing_id=listing_id,
                buyer_user_id=actor.user_id,
                seller_user_id=listing.user_id,
                price_cents=current.price_cents,
                status=PurchaseOrderStatus.PENDING.value,
            )
            session.add(order)
            await session.flush()
            session.add(
                _event(PurchaseOrderEventType.CREATED, actor, {"priceCents": current.price_cents})(order)
            )
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        context = {"listing_id": listing_id, "buyer_user_id": actor.user_id}
        logger.info("Purchase order already pending", extra=context)
        raise ConflictError(
            "You already have a pending order for this listing",
            error_code="ORDER_ALREADY_PENDING",
            context=context,
        ) from e

    logger.info(
        f"Purchase order {order.id} placed on listing {listing_id}",
        extra={"purchase_order_id": order.id, "listing_id": listing_id},
    )
    return order


async def complete_order(session: AsyncSession, actor: Actor, order_id: str) -> PurchaseOrder:
    """
    Seller confirms the sale.

    The order becomes COMPLETED, the listing SOLD, the sold copies leave the
    seller's collection and every other PENDING order on the listing FAILED,
    all in one unit of work.

    Raises:
        NotFoundError, ForbiddenError (not the seller),
        InvalidStateError: Order not PENDING or listing no longer PUBLISHED
        InsufficientQuantityError: Collection cannot cover the listing quantity
    """
    order = await _get_order(session, order_id)
    if order.seller_user_id != actor.user_id:
        raise ForbiddenError("Only the seller can complete this order", context={"purchase_order_id": order_id})
    listing_id = order.listing_id

    async with unit_of_work(session):
        order = await apply_transition(
            session,
            PurchaseOrder,
            order_id,
            COMPLETE,
            values={"closed_at": utcnow()},
            event=_event(PurchaseOrderEventType.COMPLETED, actor),
        )
        listing = await apply_transition(
            session,
            Listing,
            listing_id,
            MARK_SOLD,
            values={"sold_at": utcnow()},
            event=lambda sold: ListingEvent(
                listing_id=sold.id,
                event_type=ListingEventType.SOLD.value,
                actor_user_id=actor.user_id,
                metadata_json={"purchaseOrderId": order_id},
            ),
        )
        if listing.card_id:
            await collection.decrement(
                session,
                listing.user_id,
                listing.card_id,
                listing.language,
                listing.condition,
                listing.quantity,
            )
            await collection.purge_empty(session, [listing.user_id])

        competing = (
            await session.execute(
                select(PurchaseOrder.id).where(
                    PurchaseOrder.listing_id == listing_id,
                    PurchaseOrder.status == PurchaseOrderStatus.PENDING.value,
                )
            )
        ).scalars().all()
        for competing_id in competing:
            await apply_transition(
                session,
                PurchaseOrder,
                competing_id,
                FAIL,
                values={"closed_at": utcnow()},
                event=_event(PurchaseOrderEventType.FAILED, actor, {"reason": "LISTING_SOLD"}),
            )

    logger.info(
        f"Purchase order {order_id} completed; listing {listing_id} sold",
        extra={"purchase_order_id": order_id, "listing_id": listing_id, "failed_orders": len(competing)},
    )
    return order


async def cancel_order(session: AsyncSession, actor: Actor, order_id: str) -> PurchaseOrder:
    """Either side withdraws a PENDING order."""
    order = await _get_order(session, order_id)
    if actor.user_id not in (order.buyer_user_id, order.seller_user_id):
        raise ForbiddenError("Not a party of this order", context={"purchase_order_id": order_id})

    async with unit_of_work(session):
        order = await apply_transition(
            session,
            PurchaseOrder,
            order_id,
            CANCEL,
            values={"closed_at": utcnow()},
            event=_event(PurchaseOrderEventType.CANCELLED, actor),
        )
    return order


async def get_order(session: AsyncSession, actor: Actor, order_id: str) -> PurchaseOrder:
    order = await _get_order(session, order_id)
    if actor.user_id not in (order.buyer_user_id, order.seller_user_id):
        raise ForbiddenError("Not a party of this order", context={"purchase_order_id": order_id})
    return order


async def _list_orders(
    session: AsyncSession,
    party_column,
    user_id: str,
    limit: int,
    cursor: Optional[str],
    status: Optional[str],
) -> Page[PurchaseOrder]:
    stmt = select(PurchaseOrder).where(party_column == user_id)
    if status:
        stmt = stmt.where(PurchaseOrder.status == status)

    payload = decode_cursor(cursor, "created_desc")
    if payload:
        stmt = stmt.where(
            seek_after(PurchaseOrder.created_at, PurchaseOrder.id, cursor_datetime(payload), payload["id"], True)
        )
    stmt = stmt.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()
    return build_page(rows, limit, "created_desc", lambda order: order.created_at)


async def list_purchases(
    session: AsyncSession,
    actor: Actor,
    limit: int,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
) -> Page[PurchaseOrder]:
    """Orders the actor placed, newest first."""
    return await _list_orders(session, PurchaseOrder.buyer_user_id, actor.user_id, limit, cursor, status)


async def list_incoming_orders(
    session: AsyncSession,
    actor: Actor,
    limit: int,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
) -> Page[PurchaseOrder]:
    """Orders placed on the actor's listings, newest first."""
    return await _list_orders(session, PurchaseOrder.seller_user_id, actor.user_id, limit, cursor, status)
