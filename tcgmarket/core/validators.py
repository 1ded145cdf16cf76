"""
Input validators that depend on runtime settings or on several fields at once.
"""
from typing import Optional

from tcgmarket.core.config import get_settings
from tcgmarket.core.exceptions import ValidationError


def validate_expires_in_hours(value: Optional[int]) -> int:
    """
    Resolve the trade offer lifetime.

    Args:
        value: Requested lifetime in hours, or None for the default

    Returns:
        Lifetime in hours

    Raises:
        ValidationError: If outside 1..TRADE_OFFER_MAX_EXPIRES_HOURS
    """
    settings = get_settings()
    if value is None:
        return settings.TRADE_OFFER_DEFAULT_EXPIRES_HOURS
    if value < 1 or value > settings.TRADE_OFFER_MAX_EXPIRES_HOURS:
        raise ValidationError(
            detail=f"expiresInHours must be between 1 and {settings.TRADE_OFFER_MAX_EXPIRES_HOURS}",
            field="expiresInHours",
            value=value,
        )
    return value


def validate_price_range(min_price: Optional[int], max_price: Optional[int]) -> None:
    """
    Raises:
        ValidationError: If both bounds are set and min exceeds max
    """
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError(
            detail="minPrice must be <= maxPrice",
            field="minPrice",
            value=min_price,
        )
