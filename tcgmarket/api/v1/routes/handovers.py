"""
API endpoints for handover verification.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import (
    check_role,
    get_current_actor,
    require_active_actor,
    require_admin,
)
from tcgmarket.api.v1.schemas import (
    CreateHandoverRequest,
    DataResponse,
    HandoverCreatedResponse,
    HandoverResponse,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.security import ADMIN_ROLE, Actor
from tcgmarket.models.marketplace import HandoverStatus
from tcgmarket.services import handover_lifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/handovers", tags=["handovers"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[HandoverCreatedResponse],
)
async def create_handover(
    body: CreateHandoverRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Request verification of a physical handover.

    Exactly one of listingId / tradeOfferId must be given. Only one handover
    per listing or trade offer can await verification at a time.
    """
    handover = await handover_lifecycle.create_handover(
        session,
        actor,
        listing_id=body.listing_id,
        trade_offer_id=body.trade_offer_id,
        notes=body.notes,
    )
    return DataResponse[HandoverCreatedResponse](
        data=HandoverCreatedResponse(
            handover_id=handover.id,
            handover=HandoverResponse.model_validate(handover),
        )
    )


@router.get("", response_model=DataResponse[List[HandoverResponse]])
async def list_handovers(
    mine: bool = Query(True),
    handover_status: Optional[HandoverStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's handovers, newest first; ``mine=false`` lists everyone's (admin)."""
    if not mine:
        check_role(actor, ADMIN_ROLE)
    handovers = await handover_lifecycle.list_handovers(
        session,
        actor,
        mine=mine,
        status=handover_status.value if handover_status else None,
    )
    return DataResponse[List[HandoverResponse]](
        data=[HandoverResponse.model_validate(handover) for handover in handovers]
    )


@router.post("/{handover_id}/verify", response_model=DataResponse[HandoverResponse])
async def verify_handover(
    handover_id: str,
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    handover = await handover_lifecycle.verify_handover(session, actor, handover_id)
    return DataResponse[HandoverResponse](data=HandoverResponse.model_validate(handover))


@router.post("/{handover_id}/reject", response_model=DataResponse[HandoverResponse])
async def reject_handover(
    handover_id: str,
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    handover = await handover_lifecycle.reject_handover(session, actor, handover_id)
    return DataResponse[HandoverResponse](data=HandoverResponse.model_validate(handover))
