"""
JWT-based authentication dependencies for the marketplace API.

Tokens are issued by the external auth service. They are verified with
JWT_SECRET (HS256) or, when JWT_PUBLIC_KEY is set, with that key (RS256).
"""
import logging
from typing import List, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.config import get_settings
from tcgmarket.core.database import get_db_session
from tcgmarket.core.exceptions import ConfigurationError, ForbiddenError, UnauthorizedError
from tcgmarket.core.logging import bind_user_id
from tcgmarket.core.security import ADMIN_ROLE, Actor
from tcgmarket.services.moderation import ensure_not_banned

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


def _roles_from_payload(payload: dict) -> List[str]:
    roles = payload.get("roles")
    if isinstance(roles, list):
        return [str(role) for role in roles]
    if payload.get("isAdmin") is True:
        return [ADMIN_ROLE]
    return []


def decode_token(token: str) -> Actor:
    """
    Verify a bearer token and build the actor from its claims.

    Raises:
        UnauthorizedError: Bad signature, expired, wrong issuer or no user id
        ConfigurationError: No verification key configured
    """
    settings = get_settings()
    try:
        key = settings.jwt_verification_key
    except ValueError as e:
        logger.error(f"JWT key configuration error: {e}")
        raise ConfigurationError("Authentication is not configured", setting="JWT_SECRET") from e

    options = {"verify_signature": True, "verify_exp": True}
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("JWT token expired")
        raise UnauthorizedError("Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid JWT token: {e}")
        raise UnauthorizedError("Invalid token") from e

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        logger.warning("JWT payload missing userId/sub claim")
        raise UnauthorizedError("Invalid token: missing user identifier")

    return Actor(user_id=str(user_id), roles=tuple(_roles_from_payload(payload)))


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Actor]:
    """
    Actor for endpoints that also serve anonymous callers.

    No Authorization header gives None; a present but invalid token is still 401.
    """
    if credentials is None or not credentials.credentials:
        return None
    actor = decode_token(credentials.credentials)
    bind_user_id(actor.user_id)
    return actor


async def get_current_actor(
    actor: Optional[Actor] = Depends(get_optional_actor),
) -> Actor:
    """
    Validate the JWT from ``Authorization: Bearer <token>``.

    Raises:
        UnauthorizedError: If the header is missing or the token is invalid
    """
    if actor is None:
        raise UnauthorizedError()
    return actor


def check_role(actor: Actor, role: str) -> None:
    """
    Raise ForbiddenError unless ``actor`` holds ``role``.

    For ADMIN, a non-empty ADMIN_USER_IDS allowlist must also contain the
    actor's user id.
    """
    if not actor.has_role(role):
        logger.warning(f"User {actor.user_id} lacks role {role}")
        raise ForbiddenError(f"{role} role required")
    if role == ADMIN_ROLE:
        allowlist = get_settings().admin_user_ids
        if allowlist and actor.user_id not in allowlist:
            logger.warning(f"User {actor.user_id} has {role} role but is not allowlisted")
            raise ForbiddenError(f"{role} role required")


def require_role(role: str):
    """
    Dependency factory restricting an endpoint to actors holding ``role``.

    Usage:
        @router.post("/admin/...")
        async def endpoint(actor: Actor = Depends(require_role(ADMIN_ROLE))):
            ...
    """
    async def _require(actor: Actor = Depends(get_current_actor)) -> Actor:
        check_role(actor, role)
        return actor

    return _require


require_admin = require_role(ADMIN_ROLE)


async def require_active_actor(
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
) -> Actor:
    """Authenticated actor who is not banned; used by write endpoints."""
    await ensure_not_banned(session, actor)
    return actor
