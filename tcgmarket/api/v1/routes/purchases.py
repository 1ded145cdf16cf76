"""
API endpoints for buying listings.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import get_current_actor, require_active_actor
from tcgmarket.api.v1.schemas import (
    DataResponse,
    PageResponse,
    PurchaseOrderCreatedResponse,
    PurchaseOrderResponse,
    page_response,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.models.marketplace import PurchaseOrderStatus
from tcgmarket.services import purchase_lifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/marketplace", tags=["purchases"])


def _data(order) -> DataResponse[PurchaseOrderResponse]:
    return DataResponse[PurchaseOrderResponse](data=PurchaseOrderResponse.model_validate(order))


@router.post(
    "/listings/{listing_id}/buy",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[PurchaseOrderCreatedResponse],
)
async def buy_listing(
    listing_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Place a PENDING order at the listing's current price."""
    order = await purchase_lifecycle.buy_listing(session, actor, listing_id)
    return DataResponse[PurchaseOrderCreatedResponse](
        data=PurchaseOrderCreatedResponse(
            order_id=order.id,
            price_cents=order.price_cents,
            order=PurchaseOrderResponse.model_validate(order),
        )
    )


@router.get("/me/purchases", response_model=DataResponse[PageResponse[PurchaseOrderResponse]])
async def my_purchases(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    order_status: Optional[PurchaseOrderStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    page = await purchase_lifecycle.list_purchases(
        session,
        actor,
        limit=limit,
        cursor=cursor,
        status=order_status.value if order_status else None,
    )
    return DataResponse[PageResponse[PurchaseOrderResponse]](data=page_response(page, PurchaseOrderResponse))


@router.get("/me/orders", response_model=DataResponse[PageResponse[PurchaseOrderResponse]])
async def my_incoming_orders(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    order_status: Optional[PurchaseOrderStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Orders other users placed on the caller's listings, newest first."""
    page = await purchase_lifecycle.list_incoming_orders(
        session,
        actor,
        limit=limit,
        cursor=cursor,
        status=order_status.value if order_status else None,
    )
    return DataResponse[PageResponse[PurchaseOrderResponse]](data=page_response(page, PurchaseOrderResponse))


@router.get("/orders/{order_id}", response_model=DataResponse[PurchaseOrderResponse])
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    order = await purchase_lifecycle.get_order(session, actor, order_id)
    return _data(order)


@router.post("/orders/{order_id}/complete", response_model=DataResponse[PurchaseOrderResponse])
async def complete_order(
    order_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Seller confirms the sale.

    The listing becomes SOLD and competing PENDING orders FAILED; 409 if the
    listing was already sold or archived.
    """
    order = await purchase_lifecycle.complete_order(session, actor, order_id)
    return _data(order)


@router.post("/orders/{order_id}/cancel", response_model=DataResponse[PurchaseOrderResponse])
async def cancel_order(
    order_id: str,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    order = await purchase_lifecycle.cancel_order(session, actor, order_id)
    return _data(order)
