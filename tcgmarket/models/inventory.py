"""
SQLAlchemy models for user card collections.
"""
import enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tcgmarket.models.base import Base, TimestampMixin, new_id


class CardLanguage(enum.Enum):
    FR = "FR"
    EN = "EN"
    JP = "JP"
    DE = "DE"
    ES = "ES"
    IT = "IT"
    OTHER = "OTHER"

    def __str__(self):
        return self.value


class CardCondition(enum.Enum):
    """Card grading scale, best to worst."""
    NM = "NM"
    LP = "LP"
    MP = "MP"
    HP = "HP"
    DMG = "DMG"

    def __str__(self):
        return self.value


class CollectionItem(TimestampMixin, Base):
    """Cards a user owns, one row per (card, language, condition)."""

    __tablename__ = "user_collection_items"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "card_id", "language", "condition",
            name="uq_user_collection_card",
        ),
        CheckConstraint("quantity >= 0", name="ck_user_collection_quantity_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Owner user id (from the auth token)"
    )
    card_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Catalog card identifier"
    )
    card_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    set_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    condition: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Copies on hand; rows reaching 0 are purged"
    )
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
