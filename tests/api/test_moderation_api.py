"""
API tests for admin moderation actions and the ban guard.
"""
import asyncio

import pytest
from sqlalchemy import select

from tcgmarket.models.trust import ModerationAction, UserModerationState
from tcgmarket.services import moderation

ACTIONS = "/api/v1/admin/moderation/actions"


async def _act(client, auth_headers, **body):
    return await client.post(ACTIONS, json=body, headers=auth_headers("admin", roles=["ADMIN"]))


async def test_hide_and_unhide_listing(client, auth_headers, create_listing):
    listing = await create_listing(owner="seller", publish=True)

    response = await _act(client, auth_headers, targetType="LISTING", targetId=listing["id"], actionType="HIDE")
    assert response.status_code == 201
    assert response.json()["data"]["actionType"] == "HIDE"

    response = await client.get(f"/api/v1/marketplace/listings/{listing['id']}")
    assert response.status_code == 404
    response = await client.get("/api/v1/marketplace/listings")
    assert response.json()["data"]["items"] == []

    # The owner still sees it
    response = await client.get(f"/api/v1/marketplace/listings/{listing['id']}", headers=auth_headers("seller"))
    assert response.status_code == 200
    assert response.json()["data"]["isHidden"] is True

    await _act(client, auth_headers, targetType="LISTING", targetId=listing["id"], actionType="UNHIDE")
    response = await client.get(f"/api/v1/marketplace/listings/{listing['id']}")
    assert response.status_code == 200


async def test_ban_blocks_writes(client, auth_headers, listing_body):
    response = await _act(client, auth_headers, targetType="USER", targetId="spammer", actionType="BAN", note="spam")
    assert response.status_code == 201

    response = await client.post(
        "/api/v1/marketplace/listings", json=listing_body(), headers=auth_headers("spammer")
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "USER_BANNED"

    # Reads stay available
    response = await client.get("/api/v1/marketplace/me/listings", headers=auth_headers("spammer"))
    assert response.status_code == 200

    await _act(client, auth_headers, targetType="USER", targetId="spammer", actionType="UNBAN")
    response = await client.post(
        "/api/v1/marketplace/listings", json=listing_body(), headers=auth_headers("spammer")
    )
    assert response.status_code == 201


async def test_warn_counts_and_actions_are_recorded(client, auth_headers, session_factory):
    for _ in range(2):
        response = await _act(client, auth_headers, targetType="USER", targetId="rude", actionType="WARN")
        assert response.status_code == 201
    await _act(client, auth_headers, targetType="USER", targetId="rude", actionType="NOTE", note="watch")

    async with session_factory() as session:
        state = await session.get(UserModerationState, "rude")
        actions = (
            await session.execute(select(ModerationAction).where(ModerationAction.target_id == "rude"))
        ).scalars().all()
    assert state.warnings_count == 2
    assert state.is_banned is False
    assert sorted(action.action_type for action in actions) == ["NOTE", "WARN", "WARN"]


@pytest.mark.parametrize(
    "target_type,action_type",
    [("LISTING", "BAN"), ("USER", "HIDE"), ("LISTING", "WARN")],
)
async def test_invalid_action_combinations(client, auth_headers, create_listing, target_type, action_type):
    listing = await create_listing(owner="seller")
    target_id = listing["id"] if target_type == "LISTING" else "someone"

    response = await _act(client, auth_headers, targetType=target_type, targetId=target_id, actionType=action_type)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_ACTION"


async def test_moderation_requires_admin(client, auth_headers):
    response = await client.post(
        ACTIONS,
        json={"targetType": "USER", "targetId": "x", "actionType": "BAN"},
        headers=auth_headers("seller"),
    )
    assert response.status_code == 403


async def test_hide_missing_listing(client, auth_headers):
    response = await _act(client, auth_headers, targetType="LISTING", targetId="missing", actionType="HIDE")
    assert response.status_code == 404


async def test_concurrent_first_actions_share_one_state_row(client, auth_headers, session_factory):
    responses = await asyncio.gather(
        *[_act(client, auth_headers, targetType="USER", targetId="newcomer", actionType="WARN") for _ in range(2)]
    )
    assert [response.status_code for response in responses] == [201, 201]

    async with session_factory() as session:
        states = (
            await session.execute(select(UserModerationState).where(UserModerationState.user_id == "newcomer"))
        ).scalars().all()
    assert len(states) == 1
    assert states[0].warnings_count == 2


async def test_ensure_state_is_idempotent(session_factory):
    async with session_factory() as session:
        await moderation._ensure_state(session, "twice")
        await moderation._ensure_state(session, "twice")
        await session.commit()

        states = (
            await session.execute(select(UserModerationState).where(UserModerationState.user_id == "twice"))
        ).scalars().all()
    assert len(states) == 1
    assert states[0].warnings_count == 0
