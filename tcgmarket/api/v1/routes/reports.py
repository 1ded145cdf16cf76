"""
API endpoints for listing reports and admin moderation.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.api.dependencies import get_current_actor, require_active_actor, require_admin
from tcgmarket.api.v1.schemas import (
    CreateReportRequest,
    DataResponse,
    ModerationActionRequest,
    ModerationActionResponse,
    PageResponse,
    ReportCreatedResponse,
    ReportDecisionRequest,
    ReportResponse,
    page_response,
)
from tcgmarket.core.database import get_db_session
from tcgmarket.core.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from tcgmarket.core.security import Actor
from tcgmarket.models.trust import ReportStatus
from tcgmarket.services import moderation, report_lifecycle
from tcgmarket.services.rate_limiter import ReportRateLimiter, get_report_rate_limiter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reports", tags=["reports"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


def _data(report) -> DataResponse[ReportResponse]:
    return DataResponse[ReportResponse](data=ReportResponse.model_validate(report))


@router.post(
    "/listings/{listing_id}",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[ReportCreatedResponse],
)
async def report_listing(
    listing_id: str,
    body: CreateReportRequest,
    actor: Actor = Depends(require_active_actor),
    session: AsyncSession = Depends(get_db_session),
    rate_limiter: ReportRateLimiter = Depends(get_report_rate_limiter),
):
    """
    Report someone else's listing.

    One OPEN report per listing and reporter (409 ALREADY_REPORTED); reports
    per user are rate limited (429 RATE_LIMITED with Retry-After).
    """
    report = await report_lifecycle.create_report(
        session,
        actor,
        listing_id,
        reason=body.reason,
        details=body.details,
        rate_limiter=rate_limiter,
    )
    return DataResponse[ReportCreatedResponse](
        data=ReportCreatedResponse(report_id=report.id, report=ReportResponse.model_validate(report))
    )


@router.get("/me", response_model=DataResponse[PageResponse[ReportResponse]])
async def my_reports(
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
):
    page = await report_lifecycle.list_reports(
        session, limit=limit, cursor=cursor, reporter_user_id=actor.user_id
    )
    return DataResponse[PageResponse[ReportResponse]](data=page_response(page, ReportResponse))


@admin_router.get("/reports", response_model=DataResponse[PageResponse[ReportResponse]])
async def admin_list_reports(
    report_status: Optional[ReportStatus] = Query(None, alias="status"),
    cursor: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Report queue, newest first."""
    page = await report_lifecycle.list_reports(
        session,
        limit=limit,
        cursor=cursor,
        status=report_status.value if report_status else None,
    )
    return DataResponse[PageResponse[ReportResponse]](data=page_response(page, ReportResponse))


@admin_router.get("/reports/{report_id}", response_model=DataResponse[ReportResponse])
async def admin_get_report(
    report_id: str,
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    report = await report_lifecycle.get_report(session, report_id)
    return _data(report)


@admin_router.post("/reports/{report_id}/resolve", response_model=DataResponse[ReportResponse])
async def admin_resolve_report(
    report_id: str,
    body: Optional[ReportDecisionRequest] = Body(None),
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    report = await report_lifecycle.resolve_report(
        session, actor, report_id, note=body.note if body else None
    )
    return _data(report)


@admin_router.post("/reports/{report_id}/reject", response_model=DataResponse[ReportResponse])
async def admin_reject_report(
    report_id: str,
    body: Optional[ReportDecisionRequest] = Body(None),
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    report = await report_lifecycle.reject_report(
        session, actor, report_id, note=body.note if body else None
    )
    return _data(report)


@admin_router.post(
    "/moderation/actions",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[ModerationActionResponse],
)
async def admin_moderation_action(
    body: ModerationActionRequest,
    actor: Actor = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Apply a moderation action.

    HIDE/UNHIDE target listings, BAN/UNBAN/WARN target users, NOTE fits either.
    Other combinations are 400 INVALID_ACTION.
    """
    action = await moderation.apply_moderation_action(
        session,
        actor,
        target_type=body.target_type.value,
        target_id=body.target_id,
        action_type=body.action_type.value,
        note=body.note,
    )
    return DataResponse[ModerationActionResponse](data=ModerationActionResponse.model_validate(action))
