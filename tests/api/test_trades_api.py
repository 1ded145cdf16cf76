"""
API tests for trade offers, lazy expiration and item transfer on accept.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from tcgmarket.core.security import Actor
from tcgmarket.models.base import utcnow
from tcgmarket.models.inventory import CollectionItem
from tcgmarket.models.trade import TradeEvent, TradeOffer
from tcgmarket.services import trade_lifecycle

OFFERS = "/api/v1/trade/offers"


def _items(*entries):
    return {
        "schemaVersion": 1,
        "items": [
            {"cardId": card_id, "language": "EN", "condition": "NM", "quantity": quantity}
            for card_id, quantity in entries
        ],
    }


@pytest.fixture
def create_offer(client, auth_headers):
    async def _create(creator="alice", receiver="bob", give=(("base1-4", 1),), take=(("base1-58", 1),), **extra):
        body = {
            "receiverUserId": receiver,
            "creatorItems": _items(*give),
            "receiverItems": _items(*take),
            **extra,
        }
        response = await client.post(OFFERS, json=body, headers=auth_headers(creator))
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["tradeOfferId"] == data["tradeOffer"]["id"]
        return data["tradeOffer"]

    return _create


async def _force_expired(session_factory, offer_id):
    async with session_factory() as session:
        await session.execute(
            update(TradeOffer)
            .where(TradeOffer.id == offer_id)
            .values(expires_at=utcnow() - timedelta(minutes=5))
        )
        await session.commit()


async def _events(session_factory, offer_id):
    async with session_factory() as session:
        return (
            await session.execute(
                select(TradeEvent)
                .where(TradeEvent.trade_offer_id == offer_id)
                .order_by(TradeEvent.created_at)
            )
        ).scalars().all()


async def test_create_offer_defaults(create_offer, session_factory):
    offer = await create_offer()
    assert offer["status"] == "PENDING"
    assert offer["creatorItems"]["items"][0]["cardId"] == "base1-4"

    events = await _events(session_factory, offer["id"])
    assert [(event.event_type, event.metadata_json) for event in events] == [
        ("CREATED", {"source": "api"})
    ]

    async with session_factory() as session:
        stored = await session.get(TradeOffer, offer["id"])
    lifetime = stored.expires_at - stored.created_at
    assert timedelta(hours=71, minutes=59) < lifetime <= timedelta(hours=72, seconds=1)


async def test_self_trade_rejected(client, auth_headers):
    body = {"receiverUserId": "alice", "creatorItems": _items(("x", 1)), "receiverItems": _items()}
    response = await client.post(OFFERS, json=body, headers=auth_headers("alice"))
    assert response.status_code == 400


@pytest.mark.parametrize("hours", [0, 169])
async def test_expires_in_hours_bounds(client, auth_headers, hours):
    body = {
        "receiverUserId": "bob",
        "creatorItems": _items(("x", 1)),
        "receiverItems": _items(),
        "expiresInHours": hours,
    }
    response = await client.post(OFFERS, json=body, headers=auth_headers("alice"))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_get_offer_parties_only(client, auth_headers, create_offer):
    offer = await create_offer()

    response = await client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("mallory"))
    assert response.status_code == 403

    response = await client.get(f"{OFFERS}/missing", headers=auth_headers("alice"))
    assert response.status_code == 404

    response = await client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("bob"))
    assert response.status_code == 200
    data = response.json()["data"]
    assert [event["eventType"] for event in data["events"]] == ["CREATED"]
    assert data["events"][0]["metadata"] == {"source": "api"}
    assert data["counterOfferIds"] == []


async def test_lazy_expiration_on_read(client, auth_headers, create_offer, session_factory):
    offer = await create_offer()
    await _force_expired(session_factory, offer["id"])

    response = await client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("alice"))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "EXPIRED"
    assert [event["eventType"] for event in data["events"]] == ["CREATED", "EXPIRED"]
    assert data["events"][1]["actorUserId"] == "system"

    # A second read does not write another event
    await client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("bob"))
    events = await _events(session_factory, offer["id"])
    assert [event.event_type for event in events] == ["CREATED", "EXPIRED"]


async def test_accept_expired_offer(client, auth_headers, create_offer, session_factory):
    offer = await create_offer()
    await _force_expired(session_factory, offer["id"])

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 409
    assert "expired" in response.json()["error"]["message"]

    async with session_factory() as session:
        stored = await session.get(TradeOffer, offer["id"])
    assert stored.status == "EXPIRED"
    events = await _events(session_factory, offer["id"])
    assert [event.event_type for event in events] == ["CREATED", "EXPIRED"]


async def test_reject_and_cancel_check_expiration_first(client, auth_headers, create_offer, session_factory):
    offer = await create_offer()
    await _force_expired(session_factory, offer["id"])

    response = await client.post(f"{OFFERS}/{offer['id']}/cancel", headers=auth_headers("alice"))
    assert response.status_code == 409
    response = await client.post(f"{OFFERS}/{offer['id']}/reject", headers=auth_headers("bob"))
    assert response.status_code == 409

    events = await _events(session_factory, offer["id"])
    assert [event.event_type for event in events] == ["CREATED", "EXPIRED"]


async def test_concurrent_reads_expire_once(client, auth_headers, create_offer, session_factory):
    offer = await create_offer()
    await _force_expired(session_factory, offer["id"])

    responses = await asyncio.gather(
        *[client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("alice")) for _ in range(5)],
        client.get(OFFERS, params={"type": "sent"}, headers=auth_headers("alice")),
        client.get(OFFERS, params={"type": "received"}, headers=auth_headers("bob")),
    )
    assert all(response.status_code == 200 for response in responses)

    events = await _events(session_factory, offer["id"])
    assert [event.event_type for event in events].count("EXPIRED") == 1


async def test_list_expires_overdue_offers(client, auth_headers, create_offer, session_factory):
    stale = await create_offer()
    fresh = await create_offer()
    await _force_expired(session_factory, stale["id"])

    response = await client.get(OFFERS, params={"type": "received"}, headers=auth_headers("bob"))
    assert response.status_code == 200
    statuses = {item["id"]: item["status"] for item in response.json()["data"]["items"]}
    assert statuses == {stale["id"]: "EXPIRED", fresh["id"]: "PENDING"}

    response = await client.get(
        OFFERS, params={"type": "sent", "status": "PENDING"}, headers=auth_headers("alice")
    )
    assert [item["id"] for item in response.json()["data"]["items"]] == [fresh["id"]]


async def test_accept_transfers_items(client, auth_headers, create_offer, add_to_collection, session_factory):
    await add_to_collection("alice", "base1-4", 2)
    await add_to_collection("bob", "base1-58", 1)
    offer = await create_offer(give=(("base1-4", 2),), take=(("base1-58", 1),))

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ACCEPTED"

    async with session_factory() as session:
        rows = (await session.execute(select(CollectionItem))).scalars().all()
    holdings = {(row.user_id, row.card_id): row.quantity for row in rows}
    assert holdings == {("bob", "base1-4"): 2, ("alice", "base1-58"): 1}

    # Accepting twice is a conflict
    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 409


async def test_accept_with_missing_items_rolls_back(client, auth_headers, create_offer, add_to_collection, session_factory):
    await add_to_collection("alice", "base1-4", 1)
    offer = await create_offer(give=(("base1-4", 1),), take=(("base1-58", 1),))

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INSUFFICIENT_QUANTITY"

    async with session_factory() as session:
        stored = await session.get(TradeOffer, offer["id"])
        item = (
            await session.execute(select(CollectionItem).where(CollectionItem.user_id == "alice"))
        ).scalar_one()
    assert stored.status == "PENDING"
    assert item.quantity == 1


async def test_concurrent_accept_single_winner(client, auth_headers, create_offer, add_to_collection):
    await add_to_collection("alice", "base1-4", 1)
    await add_to_collection("bob", "base1-58", 1)
    offer = await create_offer()

    responses = await asyncio.gather(
        *[client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob")) for _ in range(3)]
    )
    codes = sorted(response.status_code for response in responses)
    assert codes == [200, 409, 409]


async def test_wrong_party_actions_forbidden(client, auth_headers, create_offer):
    offer = await create_offer()

    assert (await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("alice"))).status_code == 403
    assert (await client.post(f"{OFFERS}/{offer['id']}/reject", headers=auth_headers("alice"))).status_code == 403
    assert (await client.post(f"{OFFERS}/{offer['id']}/cancel", headers=auth_headers("bob"))).status_code == 403
    assert (await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("mallory"))).status_code == 403


async def test_reject_then_cancel_conflicts(client, auth_headers, create_offer):
    offer = await create_offer()

    response = await client.post(f"{OFFERS}/{offer['id']}/reject", headers=auth_headers("bob"))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "REJECTED"

    response = await client.post(f"{OFFERS}/{offer['id']}/cancel", headers=auth_headers("alice"))
    assert response.status_code == 409


async def test_counter_offer(client, auth_headers, create_offer, session_factory):
    offer = await create_offer()

    body = {"creatorItems": _items(("base1-58", 1)), "receiverItems": _items(("base1-4", 2))}
    response = await client.post(f"{OFFERS}/{offer['id']}/counter", json=body, headers=auth_headers("bob"))
    assert response.status_code == 201
    counter = response.json()["data"]["tradeOffer"]
    assert counter["creatorUserId"] == "bob"
    assert counter["receiverUserId"] == "alice"
    assert counter["counterOfOfferId"] == offer["id"]

    events = await _events(session_factory, counter["id"])
    assert events[0].metadata_json["counterOffer"] is True

    response = await client.get(f"{OFFERS}/{offer['id']}", headers=auth_headers("alice"))
    data = response.json()["data"]
    assert data["status"] == "PENDING"
    assert data["counterOfferIds"] == [counter["id"]]
    assert data["counteredAt"] is not None
    assert [event["eventType"] for event in data["events"]] == ["CREATED", "COUNTERED"]

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "OFFER_COUNTERED"


async def test_counter_committed_between_read_and_accept_write(
    client, auth_headers, create_offer, add_to_collection, session_factory, monkeypatch
):
    """A counter that lands after accept loaded the offer still blocks the accept."""
    await add_to_collection("alice", "base1-4", 1)
    await add_to_collection("bob", "base1-58", 1)
    offer = await create_offer()
    load_offer = trade_lifecycle._get_for_action
    counters = []

    async def load_then_counter(session, actor, offer_id, party, action):
        loaded = await load_offer(session, actor, offer_id, party, action)
        if action == "accept" and not counters:
            # End the read transaction so the counter can take the write lock.
            await session.commit()
            async with session_factory() as other:
                counter = await trade_lifecycle.counter_offer(
                    other,
                    Actor("bob"),
                    offer_id,
                    creator_items=_items(("base1-58", 1)),
                    receiver_items=_items(("base1-4", 1)),
                )
                counters.append(counter.id)
        return loaded

    monkeypatch.setattr(trade_lifecycle, "_get_for_action", load_then_counter)

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "OFFER_COUNTERED"
    assert len(counters) == 1

    async with session_factory() as session:
        stored = await session.get(TradeOffer, offer["id"])
        holdings = {
            (row.user_id, row.card_id): row.quantity
            for row in (await session.execute(select(CollectionItem))).scalars().all()
        }
    assert stored.status == "PENDING"
    assert stored.countered_at is not None
    assert holdings == {("alice", "base1-4"): 1, ("bob", "base1-58"): 1}

    events = await _events(session_factory, offer["id"])
    assert [event.event_type for event in events] == ["CREATED", "COUNTERED"]


async def test_counter_after_accept_conflicts(client, auth_headers, create_offer, add_to_collection):
    await add_to_collection("alice", "base1-4", 1)
    await add_to_collection("bob", "base1-58", 1)
    offer = await create_offer()

    response = await client.post(f"{OFFERS}/{offer['id']}/accept", headers=auth_headers("bob"))
    assert response.status_code == 200
    assert response.json()["data"]["counteredAt"] is None

    body = {"creatorItems": _items(("base1-58", 1)), "receiverItems": _items(("base1-4", 1))}
    response = await client.post(f"{OFFERS}/{offer['id']}/counter", json=body, headers=auth_headers("bob"))
    assert response.status_code == 409
