"""
API endpoints for marketplace listings.
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import get_current_actor, get_optional_actor, require_active_actor
from tcgmarket.api.v1.schemas import (
    CreateListingRequest,
    DataResponse,
    ListingCreatedResponse,
    ListingResponse,
    PageResponse,
    UpdateListingRequest,
    page_response,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.core.validators import validate_price_range
from tcgmarket.models.inventory import CardCondition, CardLanguage
from tcgmarket.models.marketplace import Game, ListingCategory, ListingStatus
from tcgmarket.services import listing_lifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/marketplace", tags=["marketplace"])

BrowseSort = Literal["date_desc", "date_asc", "price_asc", "price_desc"]


def _data(listing) -> DataResponse[ListingResponse]:
    return DataResponse[ListingResponse](data=ListingResponse.model_validate(listing))


@router.post(
    "/listings",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[ListingCreatedResponse],
)
async def create_listing(
    body: CreateListingRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a DRAFT listing."""
    listing = await listing_lifecycle.create_listing(session, actor, body.to_fields())
    return DataResponse[ListingCreatedResponse](
        data=ListingCreatedResponse(
            listing_id=listing.id,
            listing=ListingResponse.model_validate(listing),
        )
    )


@router.get("/listings", response_model=DataResponse[PageResponse[ListingResponse]])
async def browse_listings(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort: BrowseSort = Query("date_desc"),
    game: Optional[Game] = Query(None),
    category: Optional[ListingCategory] = Query(None),
    language: Optional[CardLanguage] = Query(None),
    condition: Optional[CardCondition] = Query(None),
    set_code: Optional[str] = Query(None, alias="setCode", max_length=64),
    card_id: Optional[str] = Query(None, alias="cardId", max_length=255),
    min_price: Optional[int] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[int] = Query(None, alias="maxPrice", ge=0),
    q: Optional[str] = Query(None, max_length=100),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Browse the public catalog.

    Only PUBLISHED listings that are not hidden by moderation are returned.
    """
    validate_price_range(min_price, max_price)
    page = await listing_lifecycle.browse_listings(
        session,
        limit=limit,
        cursor=cursor,
        sort=sort,
        game=game.value if game else None,
        category=category.value if category else None,
        language=language.value if language else None,
        condition=condition.value if condition else None,
        set_code=set_code,
        card_id=card_id,
        min_price=min_price,
        max_price=max_price,
        q=q.strip() if q else None,
    )
    return DataResponse[PageResponse[ListingResponse]](data=page_response(page, ListingResponse))


@router.get("/me/listings", response_model=DataResponse[PageResponse[ListingResponse]])
async def my_listings(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    listing_status: Optional[ListingStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's listings in every state, most recently changed first."""
    page = await listing_lifecycle.list_own_listings(
        session,
        actor,
        limit=limit,
        cursor=cursor,
        status=listing_status.value if listing_status else None,
    )
    return DataResponse[PageResponse[ListingResponse]](data=page_response(page, ListingResponse))


@router.get("/listings/{listing_id}", response_model=DataResponse[ListingResponse])
async def get_listing(
    listing_id: str,
    actor: Optional[Actor] = Depends(get_optional_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Owners see their listing in any state; everyone else only PUBLISHED and visible."""
    listing = await listing_lifecycle.get_listing(session, listing_id, actor)
    return _data(listing)


@router.patch("/listings/{listing_id}", response_model=DataResponse[ListingResponse])
async def update_listing(
    listing_id: str,
    body: UpdateListingRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Edit a DRAFT listing."""
    listing = await listing_lifecycle.update_listing(session, actor, listing_id, body.to_changes())
    return _data(listing)


@router.post("/listings/{listing_id}/publish", response_model=DataResponse[ListingResponse])
async def publish_listing(
    listing_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    listing = await listing_lifecycle.publish_listing(session, actor, listing_id)
    return _data(listing)


@router.post("/listings/{listing_id}/archive", response_model=DataResponse[ListingResponse])
async def archive_listing(
    listing_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    listing = await listing_lifecycle.archive_listing(session, actor, listing_id)
    return _data(listing)


@router.post("/listings/{listing_id}/mark-sold", response_model=DataResponse[ListingResponse])
async def mark_listing_sold(
    listing_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Mark a PUBLISHED listing as sold.

    Listings tied to a catalog card remove the sold copies from the seller's
    collection; 409 INSUFFICIENT_QUANTITY if the collection cannot cover them.
    """
    listing = await listing_lifecycle.mark_listing_sold(session, actor, listing_id)
    return _data(listing)
