"""
SQLAlchemy models for trade offers.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tcgmarket.models.base import (
    AuditEventMixin,
    Base,
    JSONType,
    TimestampMixin,
    UTCDateTime,
    new_id,
    utcnow,
)

SYSTEM_ACTOR = "system"


class TradeOfferStatus(enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    def __str__(self):
        return self.value


class TradeEventType(enum.Enum):
    CREATED = "CREATED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    COUNTERED = "COUNTERED"

    def __str__(self):
        return self.value


class TradeOffer(TimestampMixin, Base):
    """Card swap proposed by a creator to a receiver."""

    __tablename__ = "trade_offers"
    __table_args__ = (
        Index("ix_trade_offers_creator_created", "creator_user_id", "created_at"),
        Index("ix_trade_offers_receiver_created", "receiver_user_id", "created_at"),
        Index("ix_trade_offers_status_expires", "status", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    creator_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    creator_items_json: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        comment="Cards the creator gives: {schemaVersion, items:[{cardId, language, condition, quantity}]}"
    )
    receiver_items_json: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        comment="Cards the receiver gives, same shape"
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=TradeOfferStatus.PENDING.value,
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="Past this instant a PENDING offer is logically EXPIRED"
    )
    counter_of_offer_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("trade_offers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    countered_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Last counter-offer time; a countered offer can no longer be accepted"
    )


class TradeEvent(AuditEventMixin, Base):
    """Immutable history of trade offer transitions."""

    __tablename__ = "trade_events"
    __table_args__ = (
        Index("ix_trade_events_offer_created", "trade_offer_id", "created_at"),
    )

    trade_offer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trade_offers.id", ondelete="CASCADE"),
        nullable=False,
    )


class TradeMessage(Base):
    """Chat message in the thread of one trade offer."""

    __tablename__ = "trade_messages"
    __table_args__ = (
        Index("ix_trade_messages_offer_created", "trade_offer_id", "created_at", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trade_offer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trade_offers.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class TradeReadState(TimestampMixin, Base):
    """How far one party has read a trade offer's thread."""

    __tablename__ = "trade_read_states"
    __table_args__ = (
        UniqueConstraint("trade_offer_id", "user_id", name="uq_trade_read_states_offer_user"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trade_offer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("trade_offers.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    last_read_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
