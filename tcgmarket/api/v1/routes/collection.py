"""
API endpoints for the caller's card collection.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import get_current_actor, require_active_actor
from tcgmarket.api.v1.schemas import (
    CollectionItemResponse,
    DataResponse,
    PageResponse,
    UpsertCollectionItemRequest,
    page_response,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.models.inventory import CardCondition, CardLanguage
from tcgmarket.services import collection

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/collection", tags=["collection"])


@router.get("", response_model=DataResponse[PageResponse[CollectionItemResponse]])
async def list_collection(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    card_id: Optional[str] = Query(None, alias="cardId", max_length=255),
    language: Optional[CardLanguage] = Query(None),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    page = await collection.list_items(
        session,
        actor.user_id,
        limit=limit,
        cursor=cursor,
        card_id=card_id,
        language=language.value if language else None,
    )
    return DataResponse[PageResponse[CollectionItemResponse]](
        data=page_response(page, CollectionItemResponse)
    )


@router.put("/items", response_model=DataResponse[CollectionItemResponse])
async def upsert_collection_item(
    body: UpsertCollectionItemRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    """Set the on-hand quantity of one (card, language, condition)."""
    item = await collection.upsert_item(
        session,
        actor.user_id,
        card_id=body.card_id,
        language=body.language.value,
        condition=body.condition.value,
        quantity=body.quantity,
        card_name=body.card_name,
        set_code=body.set_code,
        is_public=body.is_public,
    )
    return DataResponse[CollectionItemResponse](data=CollectionItemResponse.model_validate(item))


@router.delete("/items", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collection_item(
    card_id: str = Query(..., alias="cardId", max_length=255),
    language: CardLanguage = Query(...),
    condition: CardCondition = Query(...),
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
):
    await collection.delete_item(
        session,
        actor.user_id,
        card_id=card_id,
        language=language.value,
        condition=condition.value,
    )
