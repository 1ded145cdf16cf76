"""
Admin moderation: hiding listings, banning and warning users.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.database import dialect_insert, unit_of_work
from tcgmarket.core.exceptions import NotFoundError, UserBannedError, ValidationError
from tcgmarket.core.logging import log_operation
from tcgmarket.core.security import Actor
from tcgmarket.models.base import utcnow
from tcgmarket.models.marketplace import Listing
from tcgmarket.models.trust import (
    ModerationAction,
    ModerationActionType,
    ModerationTargetType,
    UserModerationState,
)

logger = logging.getLogger(__name__)

ALLOWED_ACTIONS = {
    ModerationTargetType.LISTING.value: {
        ModerationActionType.HIDE.value,
        ModerationActionType.UNHIDE.value,
        ModerationActionType.NOTE.value,
    },
    ModerationTargetType.USER.value: {
        ModerationActionType.BAN.value,
        ModerationActionType.UNBAN.value,
        ModerationActionType.WARN.value,
        ModerationActionType.NOTE.value,
    },
}


async def is_banned(session: AsyncSession, user_id: str) -> bool:
    banned = (
        await session.execute(
            select(UserModerationState.is_banned).where(UserModerationState.user_id == user_id)
        )
    ).scalar_one_or_none()
    return bool(banned)


async def ensure_not_banned(session: AsyncSession, actor: Actor) -> None:
    """
    Raises:
        UserBannedError: If the actor is currently banned
    """
    if await is_banned(session, actor.user_id):
        raise UserBannedError(actor.user_id)


async def _ensure_state(session: AsyncSession, user_id: str) -> None:
    """Create the user's moderation row unless it exists; safe under concurrent first actions."""
    insert = dialect_insert(session)
    await session.execute(
        insert(UserModerationState)
        .values(user_id=user_id, is_banned=False, warnings_count=0)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )


async def apply_moderation_action(
    session: AsyncSession,
    actor: Actor,
    target_type: str,
    target_id: str,
    action_type: str,
    note: Optional[str] = None,
) -> ModerationAction:
    """
    Apply one admin action and record it.

    Raises:
        ValidationError: INVALID_ACTION when the action does not fit the target type
        NotFoundError: If a LISTING target does not exist
    """
    if action_type not in ALLOWED_ACTIONS.get(target_type, set()):
        raise ValidationError(
            detail=f"Action {action_type} is not valid for target {target_type}",
            field="actionType",
            value=action_type,
            error_code="INVALID_ACTION",
        )

    if target_type == ModerationTargetType.LISTING.value:
        if await session.get(Listing, target_id) is None:
            raise NotFoundError("Listing", target_id)

    async with unit_of_work(session):
        if action_type in (ModerationActionType.HIDE.value, ModerationActionType.UNHIDE.value):
            await session.execute(
                update(Listing)
                .where(Listing.id == target_id)
                .values(is_hidden=action_type == ModerationActionType.HIDE.value)
                .execution_options(synchronize_session=False)
            )
        elif target_type == ModerationTargetType.USER.value and action_type != ModerationActionType.NOTE.value:
            await _ensure_state(session, target_id)
            if action_type == ModerationActionType.BAN.value:
                changes = {"is_banned": True, "ban_reason": note, "banned_at": utcnow()}
            elif action_type == ModerationActionType.UNBAN.value:
                changes = {"is_banned": False, "ban_reason": None, "banned_at": None}
            else:
                changes = {"warnings_count": UserModerationState.warnings_count + 1}
            await session.execute(
                update(UserModerationState)
                .where(UserModerationState.user_id == target_id)
                .values(updated_at=utcnow(), **changes)
                .execution_options(synchronize_session=False)
            )

        action = ModerationAction(
            actor_user_id=actor.user_id,
            target_type=target_type,
            target_id=target_id,
            action_type=action_type,
            note=note,
        )
        session.add(action)
        await session.flush()

    log_operation(
        logger,
        "moderation_action",
        action_type=action_type,
        target_type=target_type,
        target_id=target_id,
    )
    return action
