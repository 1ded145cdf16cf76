"""
SQLAlchemy models for listing reports and moderation.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from tcgmarket.models.base import (
    AuditEventMixin,
    Base,
    TimestampMixin,
    UTCDateTime,
    new_id,
    utcnow,
)


class ReportStatus(enum.Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


class ReportEventType(enum.Enum):
    OPENED = "OPENED"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


class ModerationTargetType(enum.Enum):
    LISTING = "LISTING"
    USER = "USER"

    def __str__(self):
        return self.value


class ModerationActionType(enum.Enum):
    HIDE = "HIDE"
    UNHIDE = "UNHIDE"
    BAN = "BAN"
    UNBAN = "UNBAN"
    WARN = "WARN"
    NOTE = "NOTE"

    def __str__(self):
        return self.value


class ListingReport(TimestampMixin, Base):
    """User report against a listing, triaged by admins."""

    __tablename__ = "listing_reports"
    __table_args__ = (
        # Duplicate prevention: one OPEN report per (listing, reporter)
        Index(
            "uq_listing_reports_open",
            "listing_id",
            "reporter_user_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        Index("ix_listing_reports_status_created", "status", "created_at"),
        Index("ix_listing_reports_reporter_created", "reporter_user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    listing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    reporter_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ReportStatus.OPEN.value,
    )
    resolved_by_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class ListingReportEvent(AuditEventMixin, Base):
    """Immutable history of report transitions."""

    __tablename__ = "listing_report_events"
    __table_args__ = (
        Index("ix_listing_report_events_report_created", "report_id", "created_at"),
    )

    report_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("listing_reports.id", ondelete="CASCADE"),
        nullable=False,
    )


class ModerationAction(Base):
    """Audit log of admin moderation actions."""

    __tablename__ = "moderation_actions"
    __table_args__ = (
        Index("ix_moderation_actions_target", "target_type", "target_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    actor_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class UserModerationState(TimestampMixin, Base):
    """Current moderation standing of a user."""

    __tablename__ = "user_moderation_states"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    banned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    warnings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
