"""
Security helpers: the authenticated actor and input sanitization.
"""
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from tcgmarket.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_ROLE = "ADMIN"

_DANGEROUS_PATTERNS = [
    r"<script[^>]*>.*?</script>",
    r"javascript:",
    r"on\w+\s*=",  # onclick=, onerror=, etc.
    r"vbscript:",
    r"data:text/html",
]


@dataclass(frozen=True)
class Actor:
    """Caller resolved from the bearer token."""

    user_id: str
    roles: Tuple[str, ...] = field(default_factory=tuple)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(ADMIN_ROLE)


def sanitize_string(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Sanitize free-text input (titles, descriptions, notes).

    Args:
        value: String value to sanitize
        max_length: Maximum length (None for no limit)

    Returns:
        Sanitized string, or None when nothing is left
    """
    if value is None:
        return None

    value = value.strip().replace("\x00", "")

    for pattern in _DANGEROUS_PATTERNS:
        value = re.sub(pattern, "", value, flags=re.IGNORECASE | re.DOTALL)

    value = value.strip()
    if not value:
        return None

    if max_length and len(value) > max_length:
        value = value[:max_length]
        logger.warning(f"String truncated to {max_length} characters")

    return value


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user search text matches literally (use with escape='\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
