"""
API endpoints for trade offers.
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import get_current_actor, require_active_actor
from tcgmarket.api.v1.schemas import (
    CounterTradeOfferRequest,
    CreateTradeOfferRequest,
    DataResponse,
    EventResponse,
    PageResponse,
    SendTradeMessageRequest,
    TradeMessageResponse,
    TradeOfferCreatedResponse,
    TradeOfferDetailResponse,
    TradeOfferResponse,
    TradeReadStateResponse,
    page_response,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.models.trade import TradeOfferStatus
from tcgmarket.services import trade_lifecycle, trade_messages

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/trade", tags=["trade"])


def _data(offer) -> DataResponse[TradeOfferResponse]:
    return DataResponse[TradeOfferResponse](data=TradeOfferResponse.model_validate(offer))


def _created(offer) -> DataResponse[TradeOfferCreatedResponse]:
    return DataResponse[TradeOfferCreatedResponse](
        data=TradeOfferCreatedResponse(
            trade_offer_id=offer.id,
            trade_offer=TradeOfferResponse.model_validate(offer),
        )
    )


@router.post(
    "/offers",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[TradeOfferCreatedResponse],
)
async def create_offer(
    body: CreateTradeOfferRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Propose a trade to another user."""
    offer = await trade_lifecycle.create_offer(
        session,
        actor,
        receiver_user_id=body.receiver_user_id,
        creator_items=body.creator_items.model_dump(mode="json", by_alias=True),
        receiver_items=body.receiver_items.model_dump(mode="json", by_alias=True),
        expires_in_hours=body.expires_in_hours,
    )
    return _created(offer)


@router.get("/offers", response_model=DataResponse[PageResponse[TradeOfferResponse]])
async def list_offers(
    box: Literal["sent", "received"] = Query("received", alias="type"),
    offer_status: Optional[TradeOfferStatus] = Query(None, alias="status"),
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Offers the caller sent or received, newest first.

    Overdue PENDING offers of the caller are expired before the query runs.
    """
    page = await trade_lifecycle.list_offers(
        session,
        actor,
        box=box,
        limit=limit,
        cursor=cursor,
        status=offer_status.value if offer_status else None,
    )
    return DataResponse[PageResponse[TradeOfferResponse]](data=page_response(page, TradeOfferResponse))


@router.get("/offers/{offer_id}", response_model=DataResponse[TradeOfferDetailResponse])
async def get_offer(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    detail = await trade_lifecycle.get_offer(session, actor, offer_id)
    offer = TradeOfferResponse.model_validate(detail.offer)
    return DataResponse[TradeOfferDetailResponse](
        data=TradeOfferDetailResponse(
            **offer.model_dump(),
            events=[EventResponse.model_validate(event) for event in detail.events],
            counter_offer_ids=detail.counter_offer_ids,
            unread_messages=detail.unread_messages,
        )
    )


@router.post("/offers/{offer_id}/accept", response_model=DataResponse[TradeOfferResponse])
async def accept_offer(
    offer_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Receiver accepts; the items of both sides change collections."""
    offer = await trade_lifecycle.accept_offer(session, actor, offer_id)
    return _data(offer)


@router.post("/offers/{offer_id}/reject", response_model=DataResponse[TradeOfferResponse])
async def reject_offer(
    offer_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    offer = await trade_lifecycle.reject_offer(session, actor, offer_id)
    return _data(offer)


@router.post("/offers/{offer_id}/cancel", response_model=DataResponse[TradeOfferResponse])
async def cancel_offer(
    offer_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    offer = await trade_lifecycle.cancel_offer(session, actor, offer_id)
    return _data(offer)


@router.post(
    "/offers/{offer_id}/counter",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[TradeOfferCreatedResponse],
)
async def counter_offer(
    offer_id: str,
    body: CounterTradeOfferRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Receiver answers with a new offer; the original can no longer be accepted."""
    offer = await trade_lifecycle.counter_offer(
        session,
        actor,
        offer_id,
        creator_items=body.creator_items.model_dump(mode="json", by_alias=True),
        receiver_items=body.receiver_items.model_dump(mode="json", by_alias=True),
        expires_in_hours=body.expires_in_hours,
    )
    return _created(offer)


@router.post(
    "/offers/{offer_id}/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[TradeMessageResponse],
)
async def send_message(
    offer_id: str,
    body: SendTradeMessageRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Post to the offer's thread; allowed while PENDING or ACCEPTED."""
    message = await trade_messages.post_message(session, actor, offer_id, body.body)
    return DataResponse[TradeMessageResponse](data=TradeMessageResponse.model_validate(message))


@router.get("/offers/{offer_id}/messages", response_model=DataResponse[PageResponse[TradeMessageResponse]])
async def list_messages(
    offer_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Thread messages oldest first. Also marks the thread read for the caller."""
    page = await trade_messages.list_messages(session, actor, offer_id, limit=limit, cursor=cursor)
    return DataResponse[PageResponse[TradeMessageResponse]](data=page_response(page, TradeMessageResponse))


@router.post("/offers/{offer_id}/read", response_model=DataResponse[TradeReadStateResponse])
async def mark_read(
    offer_id: str,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    read_state = await trade_messages.mark_read(session, actor, offer_id)
    return DataResponse[TradeReadStateResponse](data=TradeReadStateResponse.model_validate(read_state))
