"""
Listing lifecycle.

DRAFT --publish--> PUBLISHED --mark-sold--> SOLD
DRAFT|PUBLISHED --archive--> ARCHIVED

Content edits are only accepted while DRAFT. Selling a listing tied to a
catalog card removes the sold copies from the seller's collection in the same
unit of work as the status flip.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import unit_of_work
from tcgmarket.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from tcgmarket.core.pagination import (
    Page,
    build_page,
    cursor_datetime,
    cursor_int,
    decode_cursor,
    seek_after,
)
from tcgmarket.core.security import Actor, escape_like
from tcgmarket.models.base import utcnow
from tcgmarket.models.marketplace import (
    Listing,
    ListingEvent,
    ListingEventType,
    ListingStatus,
)
from tcgmarket.services import collection
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

EDIT = Transition("Listing", "edit", (ListingStatus.DRAFT,), ListingStatus.DRAFT)
PUBLISH = Transition("Listing", "publish", (ListingStatus.DRAFT,), ListingStatus.PUBLISHED)
ARCHIVE = Transition(
    "Listing", "archive", (ListingStatus.DRAFT, ListingStatus.PUBLISHED), ListingStatus.ARCHIVED
)
MARK_SOLD = Transition("Listing", "mark-sold", (ListingStatus.PUBLISHED,), ListingStatus.SOLD)

# sort name -> (column, descending)
BROWSE_SORTS = {
    "date_desc": (Listing.published_at, True),
    "date_asc": (Listing.published_at, False),
    "price_asc": (Listing.price_cents, False),
    "price_desc": (Listing.price_cents, True),
}


def _event(event_type: ListingEventType, actor: Actor, metadata: Optional[Dict[str, Any]] = None):
    def build(listing: Listing) -> ListingEvent:
        return ListingEvent(
            listing_id=listing.id,
            event_type=event_type.value,
            actor_user_id=actor.user_id,
            metadata_json=metadata,
        )
    return build


async def _get_owned(session: AsyncSession, actor: Actor, listing_id: str) -> Listing:
    listing = await session.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError("Listing", listing_id)
    if listing.user_id != actor.user_id:
        raise ForbiddenError("Not the listing owner", context={"listing_id": listing_id})
    return listing


async def create_listing(session: AsyncSession, actor: Actor, fields: Dict[str, Any]) -> Listing:
    """Create a DRAFT listing owned by the actor."""
    listing = Listing(user_id=actor.user_id, status=ListingStatus.DRAFT.value, **fields)
    async with unit_of_work(session):
        session.add(listing)
        await session.flush()
        session.add(_event(ListingEventType.CREATED, actor)(listing))

    logger.info(f"Listing {listing.id} created", extra={"listing_id": listing.id})
    return listing


async def update_listing(
    session: AsyncSession,
    actor: Actor,
    listing_id: str,
    changes: Dict[str, Any],
) -> Listing:
    """
    Apply content changes to a DRAFT listing.

    Raises:
        NotFoundError, ForbiddenError, InvalidStateError (not DRAFT)
    """
    listing = await _get_owned(session, actor, listing_id)
    if not EDIT.allows(listing.status):
        raise InvalidStateError("Listing", listing_id, listing.status, EDIT.name)

    async with unit_of_work(session):
        listing = await apply_transition(
            session,
            Listing,
            listing_id,
            EDIT,
            values=changes,
            event=_event(ListingEventType.UPDATED, actor, {"fields": sorted(changes)}),
        )
    return listing


async def publish_listing(session: AsyncSession, actor: Actor, listing_id: str) -> Listing:
    await _get_owned(session, actor, listing_id)
    async with unit_of_work(session):
        listing = await apply_transition(
            session,
            Listing,
            listing_id,
            PUBLISH,
            values={"published_at": utcnow()},
            event=_event(ListingEventType.PUBLISHED, actor),
        )
    return listing


async def archive_listing(session: AsyncSession, actor: Actor, listing_id: str) -> Listing:
    await _get_owned(session, actor, listing_id)
    async with unit_of_work(session):
        listing = await apply_transition(
            session,
            Listing,
            listing_id,
            ARCHIVE,
            event=_event(ListingEventType.ARCHIVED, actor),
        )
    return listing


async def mark_listing_sold(session: AsyncSession, actor: Actor, listing_id: str) -> Listing:
    """
    PUBLISHED -> SOLD, removing the sold copies from the seller's collection.

    Raises:
        InsufficientQuantityError: If the collection cannot cover the listing
            quantity; the listing stays PUBLISHED and the collection unchanged
    """
    await _get_owned(session, actor, listing_id)
    async with unit_of_work(session):
        listing = await apply_transition(
            session,
            Listing,
            listing_id,
            MARK_SOLD,
            values={"sold_at": utcnow()},
            event=_event(ListingEventType.SOLD, actor),
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
    return listing


async def get_listing(session: AsyncSession, listing_id: str, actor: Optional[Actor] = None) -> Listing:
    """
    Fetch a listing as seen by ``actor``.

    Anyone but the owner only sees PUBLISHED listings that are not hidden;
    everything else is reported as not found.
    """
    listing = await session.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError("Listing", listing_id)
    is_owner = actor is not None and actor.user_id == listing.user_id
    if not is_owner and (listing.status != ListingStatus.PUBLISHED.value or listing.is_hidden):
        raise NotFoundError("Listing", listing_id)
    return listing


async def browse_listings(
    session: AsyncSession,
    limit: int,
    cursor: Optional[str] = None,
    sort: str = "date_desc",
    game: Optional[str] = None,
    category: Optional[str] = None,
    language: Optional[str] = None,
    condition: Optional[str] = None,
    set_code: Optional[str] = None,
    card_id: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    q: Optional[str] = None,
) -> Page[Listing]:
    """Public catalog: PUBLISHED, not hidden listings."""
    sort_column, descending = BROWSE_SORTS[sort]
    stmt = select(Listing).where(
        Listing.status == ListingStatus.PUBLISHED.value,
        Listing.is_hidden.is_(False),
    )
    for column, value in (
        (Listing.game, game),
        (Listing.category, category),
        (Listing.language, language),
        (Listing.condition, condition),
        (Listing.set_code, set_code),
        (Listing.card_id, card_id),
    ):
        if value is not None:
            stmt = stmt.where(column == value)
    if min_price is not None:
        stmt = stmt.where(Listing.price_cents >= min_price)
    if max_price is not None:
        stmt = stmt.where(Listing.price_cents <= max_price)
    if q:
        pattern = f"%{escape_like(q.lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(Listing.title).like(pattern, escape="\\"),
                func.lower(Listing.card_name).like(pattern, escape="\\"),
            )
        )

    payload = decode_cursor(cursor, sort)
    if payload:
        value = cursor_int(payload) if sort.startswith("price") else cursor_datetime(payload)
        stmt = stmt.where(seek_after(sort_column, Listing.id, value, payload["id"], descending))

    if descending:
        stmt = stmt.order_by(sort_column.desc(), Listing.id.desc())
    else:
        stmt = stmt.order_by(sort_column.asc(), Listing.id.asc())

    rows = (await session.execute(stmt.limit(limit + 1))).scalars().all()
    attr = sort_column.key
    return build_page(rows, limit, sort, lambda listing: getattr(listing, attr))


async def list_own_listings(
    session: AsyncSession,
    actor: Actor,
    limit: int,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
) -> Page[Listing]:
    """The actor's listings in every state, most recently changed first."""
    stmt = select(Listing).where(Listing.user_id == actor.user_id)
    if status:
        stmt = stmt.where(Listing.status == status)

    payload = decode_cursor(cursor, "updated_desc")
    if payload:
        stmt = stmt.where(
            seek_after(Listing.updated_at, Listing.id, cursor_datetime(payload), payload["id"], True)
        )
    stmt = stmt.order_by(Listing.updated_at.desc(), Listing.id.desc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()
    return build_page(rows, limit, "updated_desc", lambda listing: listing.updated_at)
