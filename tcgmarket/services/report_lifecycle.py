"""
Listing reports.

OPEN --resolve (admin)--> RESOLVED
OPEN --reject (admin)---> REJECTED

A reporter has at most one OPEN report per listing. Duplicates are detected by
the partial unique index at insert time, never by a read-then-insert check.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import is_unique_violation, unit_of_work
from tcgmarket.core.exceptions import AlreadyReportedError, ForbiddenError, NotFoundError
from tcgmarket.core.pagination import (
    Page,
    build_page,
    cursor_datetime,
    decode_cursor,
    seek_after,
)
from tcgmarket.core.security import Actor
from tcgmarket.models.base import utcnow
from tcgmarket.models.marketplace import Listing
from tcgmarket.models.trust import (
    ListingReport,
    ListingReportEvent,
    ReportEventType,
    ReportStatus,
)
from tcgmarket.services.rate_limiter import ReportRateLimiter
from tcgmarket.services.transition_guard import Transition, apply_transition

logger = logging.getLogger(__name__)

RESOLVE = Transition("ListingReport", "resolve", (ReportStatus.OPEN,), ReportStatus.RESOLVED)
REJECT = Transition("ListingReport", "reject", (ReportStatus.OPEN,), ReportStatus.REJECTED)


def _event(event_type: ReportEventType, actor: Actor, metadata=None):
    def build(report: ListingReport) -> ListingReportEvent:
        return ListingReportEvent(
            report_id=report.id,
            event_type=event_type.value,
            actor_user_id=actor.user_id,
            metadata_json=metadata,
        )
    return build


async def create_report(
    session: AsyncSession,
    actor: Actor,
    listing_id: str,
    reason: str,
    details: Optional[str],
    rate_limiter: ReportRateLimiter,
) -> ListingReport:
    """
    File a report against someone else's listing.

    Raises:
        RateLimitError: Too many reports in the current window
        NotFoundError: Listing does not exist
        ForbiddenError: Actor owns the listing
        AlreadyReportedError: Actor already has an OPEN report on it
    """
    await rate_limiter.check(actor.user_id)

    listing = await session.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError("Listing", listing_id)
    if listing.user_id == actor.user_id:
        raise ForbiddenError("Cannot report your own listing")

    report = ListingReport(
        listing_id=listing_id,
        reporter_user_id=actor.user_id,
        reason=reason,
        details=details,
        status=ReportStatus.OPEN.value,
    )
    try:
        async with unit_of_work(session):
            session.add(report)
            await session.flush()
            session.add(_event(ReportEventType.OPENED, actor, {"reason": reason})(report))
    except IntegrityError as e:
        if not is_unique_violation(e):
            raise
        raise AlreadyReportedError(listing_id, actor.user_id) from e

    await rate_limiter.record(actor.user_id)
    logger.info(
        f"Report {report.id} opened on listing {listing_id}",
        extra={"report_id": report.id, "listing_id": listing_id},
    )
    return report


async def _decide(
    session: AsyncSession,
    actor: Actor,
    report_id: str,
    transition: Transition,
    event_type: ReportEventType,
    note: Optional[str],
) -> ListingReport:
    async with unit_of_work(session):
        report = await apply_transition(
            session,
            ListingReport,
            report_id,
            transition,
            values={
                "resolved_by_user_id": actor.user_id,
                "resolved_at": utcnow(),
                "resolution_note": note,
            },
            event=_event(event_type, actor, {"note": note} if note else None),
        )
    return report


async def resolve_report(
    session: AsyncSession, actor: Actor, report_id: str, note: Optional[str] = None
) -> ListingReport:
    return await _decide(session, actor, report_id, RESOLVE, ReportEventType.RESOLVED, note)


async def reject_report(
    session: AsyncSession, actor: Actor, report_id: str, note: Optional[str] = None
) -> ListingReport:
    return await _decide(session, actor, report_id, REJECT, ReportEventType.REJECTED, note)


async def get_report(session: AsyncSession, report_id: str) -> ListingReport:
    report = await session.get(ListingReport, report_id)
    if report is None:
        raise NotFoundError("ListingReport", report_id)
    return report


async def list_reports(
    session: AsyncSession,
    limit: int,
    cursor: Optional[str] = None,
    status: Optional[str] = None,
    reporter_user_id: Optional[str] = None,
) -> Page[ListingReport]:
    """Reports newest first; the admin queue filters by status, "my reports" by reporter."""
    stmt = select(ListingReport)
    if status:
        stmt = stmt.where(ListingReport.status == status)
    if reporter_user_id:
        stmt = stmt.where(ListingReport.reporter_user_id == reporter_user_id)

    payload = decode_cursor(cursor, "created_desc")
    if payload:
        stmt = stmt.where(
            seek_after(
                ListingReport.created_at,
                ListingReport.id,
                cursor_datetime(payload),
                payload["id"],
                descending=True,
            )
        )
    stmt = stmt.order_by(ListingReport.created_at.desc(), ListingReport.id.desc()).limit(limit + 1)
    rows = (await session.execute(stmt)).scalars().all()
    return build_page(rows, limit, "created_desc", lambda report: report.created_at)
