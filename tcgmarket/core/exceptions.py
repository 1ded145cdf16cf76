"""
Exception hierarchy for the TCG marketplace.

All exceptions inherit from MarketplaceError and carry a stable machine-readable
code plus structured context for logging. The HTTP layer renders them as
``{"error": {"code", "message"}}``.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """
    Base exception for all marketplace errors.

    Attributes:
        status_code: HTTP status code for API responses
        error_code: Machine-readable error code
        detail: Human-readable error message
        context: Additional context (user_id, listing_id, etc.), logged but not returned
    """

    def __init__(
        self,
        detail: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize exception.

        Args:
            detail: Human-readable error message
            status_code: HTTP status code
            error_code: Machine-readable error code (defaults to class name)
            context: Additional context dictionary
        """
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to the error envelope.

        Returns:
            Dictionary with error information
        """
        return {
            "error": {
                "code": self.error_code,
                "message": self.detail,
            }
        }


# 400

class ValidationError(MarketplaceError):
    """Input validation error, raised before touching storage."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        error_code: str = "VALIDATION_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=400,
            error_code=error_code,
            context={"field": field, "value": value, **(context or {})},
        )


class InvalidCursorError(ValidationError):
    """Pagination cursor could not be decoded or belongs to another query."""

    def __init__(self, detail: str = "Invalid cursor"):
        super().__init__(detail=detail, field="cursor", error_code="INVALID_CURSOR")


# 401 / 403

class UnauthorizedError(MarketplaceError):
    """Missing or invalid credential."""

    def __init__(self, detail: str = "Missing or invalid Authorization header"):
        super().__init__(detail=detail, status_code=401, error_code="UNAUTHORIZED")


class ForbiddenError(MarketplaceError):
    """Authenticated, but the wrong actor or role for this entity instance."""

    def __init__(
        self,
        detail: str = "Forbidden",
        error_code: str = "FORBIDDEN",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=403,
            error_code=error_code,
            context=context,
        )


class UserBannedError(ForbiddenError):
    """Actor is banned from write operations."""

    def __init__(self, user_id: str):
        super().__init__(
            detail="User is banned",
            error_code="USER_BANNED",
            context={"user_id": user_id},
        )


# 404

class NotFoundError(MarketplaceError):
    """Resource not found (or hidden from this actor)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        context: Optional[Dict[str, Any]] = None,
    ):
        detail = f"{resource_type} {resource_id} not found"
        super().__init__(
            detail=detail,
            status_code=404,
            error_code="NOT_FOUND",
            context={"resource_type": resource_type, "resource_id": resource_id, **(context or {})},
        )


# 409

class ConflictError(MarketplaceError):
    """Entity exists but its state forbids the request."""

    def __init__(
        self,
        detail: str,
        error_code: str = "CONFLICT",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=409,
            error_code=error_code,
            context=context,
        )


class InvalidStateError(ConflictError):
    """Transition attempted from a state that does not allow it."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        current_status: str,
        transition: str,
    ):
        self.current_status = current_status
        super().__init__(
            detail=f"Cannot {transition} {resource_type} {resource_id}: status is {current_status}",
            context={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "current_status": current_status,
                "transition": transition,
            },
        )


class OfferExpiredError(ConflictError):
    """Trade offer passed its expiresAt before the requested transition."""

    def __init__(self, offer_id: str, error_code: str = "CONFLICT"):
        super().__init__(
            detail="Trade offer has expired",
            error_code=error_code,
            context={"trade_offer_id": offer_id},
        )


class OfferCounteredError(ConflictError):
    """Trade offer was superseded by a counter-offer."""

    def __init__(self, offer_id: str):
        super().__init__(
            detail="Offer has been countered",
            error_code="OFFER_COUNTERED",
            context={"trade_offer_id": offer_id},
        )


class InsufficientQuantityError(ConflictError):
    """Collection quantity cannot cover the requested decrement."""

    def __init__(
        self,
        user_id: str,
        card_id: str,
        required: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=f"Insufficient quantity for card {card_id}: {required} required",
            error_code="INSUFFICIENT_QUANTITY",
            context={"user_id": user_id, "card_id": card_id, "required": required, **(context or {})},
        )


class AlreadyReportedError(ConflictError):
    """Reporter already has an OPEN report on this listing."""

    def __init__(self, listing_id: str, reporter_user_id: str):
        super().__init__(
            detail="You already have an open report for this listing",
            error_code="ALREADY_REPORTED",
            context={"listing_id": listing_id, "reporter_user_id": reporter_user_id},
        )


# 429

class RateLimitError(MarketplaceError):
    """Rate limit exceeded (429)."""

    def __init__(
        self,
        detail: str = "Too many requests",
        retry_after: Optional[float] = None,
        user_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=429,
            error_code="RATE_LIMITED",
            context={
                "retry_after": retry_after,
                "user_id": user_id,
                **(context or {}),
            },
        )


# 5xx

class ConfigurationError(MarketplaceError):
    """Service is misconfigured (e.g. no JWT key)."""

    def __init__(
        self,
        detail: str,
        setting: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=503,
            error_code="CONFIGURATION_ERROR",
            context={"setting": setting, **(context or {})},
        )
