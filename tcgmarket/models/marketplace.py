"""
SQLAlchemy models for marketplace listings, purchase orders and handovers.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tcgmarket.models.base import (
    AuditEventMixin,
    Base,
    JSONType,
    TimestampMixin,
    UTCDateTime,
    new_id,
)


class Game(enum.Enum):
    POKEMON = "POKEMON"
    ONE_PIECE = "ONE_PIECE"
    MTG = "MTG"
    YUGIOH = "YUGIOH"
    LORCANA = "LORCANA"
    OTHER = "OTHER"

    def __str__(self):
        return self.value


class ListingCategory(enum.Enum):
    CARD = "CARD"
    SEALED = "SEALED"
    ACCESSORY = "ACCESSORY"

    def __str__(self):
        return self.value


class ListingStatus(enum.Enum):
    """Listing lifecycle: DRAFT -> PUBLISHED -> SOLD, DRAFT|PUBLISHED -> ARCHIVED."""
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    SOLD = "SOLD"

    def __str__(self):
        return self.value


class ListingEventType(enum.Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"
    SOLD = "SOLD"

    def __str__(self):
        return self.value


class HandoverStatus(enum.Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


class HandoverEventType(enum.Enum):
    REQUESTED = "REQUESTED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


class PurchaseOrderStatus(enum.Enum):
    """PENDING until the seller completes it or either side cancels it."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    def __str__(self):
        return self.value


class PurchaseOrderEventType(enum.Enum):
    CREATED = "CREATED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    def __str__(self):
        return self.value


class Listing(TimestampMixin, Base):
    """Item offered for sale by a user."""

    __tablename__ = "listings"
    __table_args__ = (
        Index("ix_listings_status_published_at", "status", "published_at"),
        Index("ix_listings_user_updated_at", "user_id", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Seller user id"
    )
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Price in cents (to avoid floating point errors)"
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    game: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    condition: Mapped[str] = mapped_column(String(8), nullable=False)
    card_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Catalog card id; when set, selling decrements the seller's collection"
    )
    card_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    set_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    edition: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    attributes_json: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),  # String instead of Enum so new states need no DDL
        nullable=False,
        default=ListingStatus.DRAFT.value,
    )
    is_hidden: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Hidden by moderation; invisible to everyone but the owner"
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sold_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class ListingEvent(AuditEventMixin, Base):
    """Immutable history of listing transitions."""

    __tablename__ = "listing_events"
    __table_args__ = (
        Index("ix_listing_events_listing_created", "listing_id", "created_at"),
    )

    listing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )


class Handover(TimestampMixin, Base):
    """
    Physical handover awaiting admin verification.

    References exactly one parent: a listing or a trade offer.
    """

    __tablename__ = "handovers"
    __table_args__ = (
        CheckConstraint(
            "(listing_id IS NULL) <> (trade_offer_id IS NULL)",
            name="ck_handovers_single_parent",
        ),
        # One PENDING_VERIFICATION handover per parent
        Index(
            "uq_handovers_listing_pending",
            "listing_id",
            unique=True,
            postgresql_where=text("status = 'PENDING_VERIFICATION'"),
            sqlite_where=text("status = 'PENDING_VERIFICATION'"),
        ),
        Index(
            "uq_handovers_trade_offer_pending",
            "trade_offer_id",
            unique=True,
            postgresql_where=text("status = 'PENDING_VERIFICATION'"),
            sqlite_where=text("status = 'PENDING_VERIFICATION'"),
        ),
        Index("ix_handovers_requester_created", "requested_by_user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    listing_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=True,
    )
    trade_offer_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("trade_offers.id", ondelete="CASCADE"),
        nullable=True,
    )
    requested_by_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=HandoverStatus.PENDING_VERIFICATION.value,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Admin who verified or rejected the handover"
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class HandoverEvent(AuditEventMixin, Base):
    """Immutable history of handover transitions."""

    __tablename__ = "handover_events"
    __table_args__ = (
        Index("ix_handover_events_handover_created", "handover_id", "created_at"),
    )

    handover_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("handovers.id", ondelete="CASCADE"),
        nullable=False,
    )


class PurchaseOrder(TimestampMixin, Base):
    """A buyer's order for a whole listing at the price it had when ordered."""

    __tablename__ = "purchase_orders"
    __table_args__ = (
        # One PENDING order per buyer and listing
        Index(
            "uq_purchase_orders_listing_buyer_pending",
            "listing_id",
            "buyer_user_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_purchase_orders_buyer_created", "buyer_user_id", "created_at"),
        Index("ix_purchase_orders_seller_created", "seller_user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    listing_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    buyer_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    seller_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Listing price when the order was placed"
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=PurchaseOrderStatus.PENDING.value,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="When the order left PENDING"
    )


class PurchaseOrderEvent(AuditEventMixin, Base):
    """Immutable history of purchase order transitions."""

    __tablename__ = "purchase_order_events"
    __table_args__ = (
        Index("ix_purchase_order_events_order_created", "purchase_order_id", "created_at"),
    )

    purchase_order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
