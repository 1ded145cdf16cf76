"""
Pydantic schemas for API request/response models.

Wire names are camelCase (``priceCents``); Python attributes stay snake_case.
Request models reject unknown fields.
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tcgmarket.core.security import sanitize_string
from tcgmarket.models.inventory import CardCondition, CardLanguage
from tcgmarket.models.marketplace import Game, ListingCategory
from tcgmarket.models.trust import ModerationActionType, ModerationTargetType

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# Envelopes

class DataResponse(BaseModel, Generic[T]):
    """Success envelope: ``{"data": ...}``."""

    data: T


class PageResponse(CamelModel, Generic[T]):
    items: List[T]
    next_cursor: Optional[str] = None


# Shared

class EventResponse(CamelModel):
    """One immutable audit event."""

    id: str
    event_type: str
    actor_user_id: str
    metadata_json: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime


# Listings

class CreateListingRequest(RequestModel):
    """Request schema for creating a DRAFT listing."""

    title: str = Field(
        ...,
        min_length=3,
        max_length=120,
        examples=["Charizard Base Set Holo"],
    )
    description: Optional[str] = Field(None, max_length=2000)
    price_cents: int = Field(
        ...,
        ge=0,
        description="Price in cents (must be >= 0)",
        examples=[12500],
    )
    quantity: int = Field(1, ge=1)
    game: Game
    category: ListingCategory
    language: CardLanguage
    condition: CardCondition
    card_id: Optional[str] = Field(
        None,
        max_length=255,
        description="Catalog card id; when set, selling the listing decrements your collection",
    )
    card_name: Optional[str] = Field(None, max_length=255)
    set_code: Optional[str] = Field(None, max_length=64)
    edition: Optional[str] = Field(None, max_length=64)
    attributes: Optional[Dict[str, Any]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        cleaned = sanitize_string(v, max_length=120)
        if cleaned is None or len(cleaned) < 3:
            raise ValueError("Title must be at least 3 characters")
        return cleaned

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v, max_length=2000)

    def to_fields(self) -> Dict[str, Any]:
        """Column values for the Listing model."""
        fields = self.model_dump(mode="json", exclude_unset=True)
        if "attributes" in fields:
            fields["attributes_json"] = fields.pop("attributes")
        return fields


class UpdateListingRequest(RequestModel):
    """Partial update of a DRAFT listing; at least one field is required."""

    title: Optional[str] = Field(None, min_length=3, max_length=120)
    description: Optional[str] = Field(None, max_length=2000)
    price_cents: Optional[int] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    game: Optional[Game] = None
    category: Optional[ListingCategory] = None
    language: Optional[CardLanguage] = None
    condition: Optional[CardCondition] = None
    card_id: Optional[str] = Field(None, max_length=255)
    card_name: Optional[str] = Field(None, max_length=255)
    set_code: Optional[str] = Field(None, max_length=64)
    edition: Optional[str] = Field(None, max_length=64)
    attributes: Optional[Dict[str, Any]] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        cleaned = sanitize_string(v, max_length=120)
        if cleaned is None or len(cleaned) < 3:
            raise ValueError("Title must be at least 3 characters")
        return cleaned

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v, max_length=2000)

    @model_validator(mode="after")
    def validate_at_least_one_field(self) -> "UpdateListingRequest":
        """Ensure at least one field is provided for update."""
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        for name in ("title", "price_cents", "quantity", "game", "category", "language", "condition"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self

    def to_changes(self) -> Dict[str, Any]:
        changes = self.model_dump(mode="json", exclude_unset=True)
        if "attributes" in changes:
            changes["attributes_json"] = changes.pop("attributes")
        return changes


class ListingResponse(CamelModel):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    price_cents: int
    quantity: int
    game: str
    category: str
    language: str
    condition: str
    card_id: Optional[str] = None
    card_name: Optional[str] = None
    set_code: Optional[str] = None
    edition: Optional[str] = None
    attributes_json: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("attributes_json", "attributes"),
        serialization_alias="attributes",
    )
    status: str
    is_hidden: bool
    published_at: Optional[datetime] = None
    sold_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ListingCreatedResponse(CamelModel):
    listing_id: str
    listing: ListingResponse


# Purchase orders

class PurchaseOrderResponse(CamelModel):
    id: str
    listing_id: str
    buyer_user_id: str
    seller_user_id: str
    price_cents: int
    status: str
    closed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PurchaseOrderCreatedResponse(CamelModel):
    order_id: str
    price_cents: int
    order: PurchaseOrderResponse


# Trade offers

class TradeItem(RequestModel):
    card_id: str = Field(..., min_length=1, max_length=255)
    language: CardLanguage
    condition: CardCondition
    quantity: int = Field(..., ge=1)


class TradeItems(RequestModel):
    """Versioned item list stored as JSON on the offer."""

    schema_version: int = Field(1, ge=1)
    items: List[TradeItem] = Field(default_factory=list, max_length=50)


class CreateTradeOfferRequest(RequestModel):
    receiver_user_id: str = Field(..., min_length=1, max_length=255)
    creator_items: TradeItems
    receiver_items: TradeItems
    expires_in_hours: Optional[int] = Field(
        None,
        description="Hours until the offer expires (1..168, default 72)",
        examples=[72],
    )

    @model_validator(mode="after")
    def validate_not_empty(self) -> "CreateTradeOfferRequest":
        if not self.creator_items.items and not self.receiver_items.items:
            raise ValueError("A trade offer must include at least one item")
        return self


class CounterTradeOfferRequest(RequestModel):
    """Items are from the countering user's point of view (they become the creator)."""

    creator_items: TradeItems
    receiver_items: TradeItems
    expires_in_hours: Optional[int] = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> "CounterTradeOfferRequest":
        if not self.creator_items.items and not self.receiver_items.items:
            raise ValueError("A trade offer must include at least one item")
        return self


class TradeOfferResponse(CamelModel):
    id: str
    creator_user_id: str
    receiver_user_id: str
    creator_items_json: Dict[str, Any] = Field(
        validation_alias=AliasChoices("creator_items_json", "creatorItems"),
        serialization_alias="creatorItems",
    )
    receiver_items_json: Dict[str, Any] = Field(
        validation_alias=AliasChoices("receiver_items_json", "receiverItems"),
        serialization_alias="receiverItems",
    )
    status: str
    expires_at: datetime
    counter_of_offer_id: Optional[str] = None
    countered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TradeOfferDetailResponse(TradeOfferResponse):
    events: List[EventResponse] = Field(default_factory=list)
    counter_offer_ids: List[str] = Field(default_factory=list)
    unread_messages: int = 0


class TradeOfferCreatedResponse(CamelModel):
    trade_offer_id: str
    trade_offer: TradeOfferResponse


class SendTradeMessageRequest(RequestModel):
    body: str = Field(..., min_length=1, max_length=2000)

    @field_validator("body")
    @classmethod
    def validate_body(cls, v: str) -> str:
        cleaned = sanitize_string(v, max_length=2000)
        if not cleaned:
            raise ValueError("Message body cannot be empty")
        return cleaned


class TradeMessageResponse(CamelModel):
    id: str
    trade_offer_id: str
    sender_user_id: str
    body: str
    created_at: datetime


class TradeReadStateResponse(CamelModel):
    trade_offer_id: str
    user_id: str
    last_read_at: datetime


# Handovers

class CreateHandoverRequest(RequestModel):
    """Exactly one of listingId / tradeOfferId; checked by the service."""

    listing_id: Optional[str] = None
    trade_offer_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v, max_length=2000)


class HandoverResponse(CamelModel):
    id: str
    listing_id: Optional[str] = None
    trade_offer_id: Optional[str] = None
    requested_by_user_id: str
    status: str
    notes: Optional[str] = None
    verified_by_user_id: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class HandoverCreatedResponse(CamelModel):
    handover_id: str
    handover: HandoverResponse


# Reports and moderation

class CreateReportRequest(RequestModel):
    reason: str = Field(..., min_length=1, max_length=200)
    details: Optional[str] = Field(None, max_length=2000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        cleaned = sanitize_string(v, max_length=200)
        if cleaned is None:
            raise ValueError("Reason must not be empty")
        return cleaned

    @field_validator("details")
    @classmethod
    def validate_details(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v, max_length=2000)


class ReportDecisionRequest(RequestModel):
    note: Optional[str] = Field(None, max_length=2000)


class ReportResponse(CamelModel):
    id: str
    listing_id: str
    reporter_user_id: str
    reason: str
    details: Optional[str] = None
    status: str
    resolved_by_user_id: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReportCreatedResponse(CamelModel):
    report_id: str
    report: ReportResponse


class ModerationActionRequest(RequestModel):
    target_type: ModerationTargetType
    target_id: str = Field(..., min_length=1, max_length=255)
    action_type: ModerationActionType
    note: Optional[str] = Field(None, max_length=2000)


class ModerationActionResponse(CamelModel):
    id: str
    actor_user_id: str
    target_type: str
    target_id: str
    action_type: str
    note: Optional[str] = None
    created_at: datetime


# Collection

class UpsertCollectionItemRequest(RequestModel):
    card_id: str = Field(..., min_length=1, max_length=255)
    language: CardLanguage
    condition: CardCondition
    quantity: int = Field(..., ge=1, description="On-hand quantity (must be >= 1)")
    card_name: Optional[str] = Field(None, max_length=255)
    set_code: Optional[str] = Field(None, max_length=64)
    is_public: bool = True


class CollectionItemResponse(CamelModel):
    id: str
    user_id: str
    card_id: str
    card_name: Optional[str] = None
    set_code: Optional[str] = None
    language: str
    condition: str
    quantity: int
    is_public: bool
    created_at: datetime
    updated_at: datetime




def page_response(page, schema) -> PageResponse:
    """Convert a service ``Page`` of ORM rows into the wire page."""
    return PageResponse(
        items=[schema.model_validate(item) for item in page.items],
        next_cursor=page.next_cursor,
    )
