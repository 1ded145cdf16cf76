"""
API tests for buying listings and completing purchase orders.
"""
import asyncio

from sqlalchemy import select

from tcgmarket.models.inventory import CollectionItem
from tcgmarket.models.marketplace import Listing, ListingEvent, PurchaseOrder, PurchaseOrderEvent

MARKETPLACE = "/api/v1/marketplace"


async def _buy(client, auth_headers, listing_id, buyer="buyer"):
    return await client.post(f"{MARKETPLACE}/listings/{listing_id}/buy", headers=auth_headers(buyer))


async def _order_events(session_factory, order_id):
    async with session_factory() as session:
        return (
            await session.execute(
                select(PurchaseOrderEvent)
                .where(PurchaseOrderEvent.purchase_order_id == order_id)
                .order_by(PurchaseOrderEvent.created_at)
            )
        ).scalars().all()


async def test_purchase_scenario(client, auth_headers, create_listing, add_to_collection, session_factory):
    await add_to_collection("seller", "base1-4", 2)
    listing = await create_listing(owner="seller", publish=True, cardId="base1-4", quantity=1, priceCents=4200)

    response = await _buy(client, auth_headers, listing["id"])
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["priceCents"] == 4200
    assert data["orderId"] == data["order"]["id"]
    assert data["order"]["status"] == "PENDING"
    assert data["order"]["sellerUserId"] == "seller"
    order_id = data["orderId"]

    response = await client.get(f"{MARKETPLACE}/me/purchases", headers=auth_headers("buyer"))
    assert [item["id"] for item in response.json()["data"]["items"]] == [order_id]
    response = await client.get(f"{MARKETPLACE}/me/orders", headers=auth_headers("seller"))
    assert [item["id"] for item in response.json()["data"]["items"]] == [order_id]
    response = await client.get(f"{MARKETPLACE}/me/orders", headers=auth_headers("buyer"))
    assert response.json()["data"]["items"] == []

    # Only the seller completes
    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/complete", headers=auth_headers("buyer"))
    assert response.status_code == 403

    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/complete", headers=auth_headers("seller"))
    assert response.status_code == 200
    completed = response.json()["data"]
    assert completed["status"] == "COMPLETED"
    assert completed["closedAt"] is not None

    response = await client.get(f"{MARKETPLACE}/listings/{listing['id']}", headers=auth_headers("seller"))
    assert response.json()["data"]["status"] == "SOLD"

    async with session_factory() as session:
        item = (
            await session.execute(select(CollectionItem).where(CollectionItem.user_id == "seller"))
        ).scalar_one()
        sold = (
            await session.execute(
                select(ListingEvent).where(
                    ListingEvent.listing_id == listing["id"], ListingEvent.event_type == "SOLD"
                )
            )
        ).scalar_one()
    assert item.quantity == 1
    assert sold.metadata_json == {"purchaseOrderId": order_id}

    events = await _order_events(session_factory, order_id)
    assert [event.event_type for event in events] == ["CREATED", "COMPLETED"]
    assert events[0].metadata_json == {"priceCents": 4200}


async def test_price_is_snapshotted(client, auth_headers, create_listing, session_factory):
    listing = await create_listing(owner="seller", publish=True, priceCents=1000)
    order_id = (await _buy(client, auth_headers, listing["id"])).json()["data"]["orderId"]

    async with session_factory() as session:
        stored = await session.get(Listing, listing["id"])
        stored.price_cents = 5000
        await session.commit()

    response = await client.get(f"{MARKETPLACE}/orders/{order_id}", headers=auth_headers("buyer"))
    assert response.json()["data"]["priceCents"] == 1000


async def test_buy_preconditions(client, auth_headers, create_listing):
    draft = await create_listing(owner="seller")
    published = await create_listing(owner="seller", publish=True)

    response = await _buy(client, auth_headers, "missing")
    assert response.status_code == 404

    response = await _buy(client, auth_headers, draft["id"])
    assert response.status_code == 409

    response = await _buy(client, auth_headers, published["id"], buyer="seller")
    assert response.status_code == 403

    response = await _buy(client, auth_headers, published["id"])
    assert response.status_code == 201
    response = await _buy(client, auth_headers, published["id"])
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ORDER_ALREADY_PENDING"

    # A different buyer can still order
    response = await _buy(client, auth_headers, published["id"], buyer="collector")
    assert response.status_code == 201


async def test_cancel_then_buy_again(client, auth_headers, create_listing, session_factory):
    listing = await create_listing(owner="seller", publish=True)
    order_id = (await _buy(client, auth_headers, listing["id"])).json()["data"]["orderId"]

    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/cancel", headers=auth_headers("stranger"))
    assert response.status_code == 403

    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/cancel", headers=auth_headers("buyer"))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CANCELLED"

    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/complete", headers=auth_headers("seller"))
    assert response.status_code == 409

    response = await _buy(client, auth_headers, listing["id"])
    assert response.status_code == 201

    response = await client.get(
        f"{MARKETPLACE}/me/purchases", params={"status": "PENDING"}, headers=auth_headers("buyer")
    )
    assert len(response.json()["data"]["items"]) == 1


async def test_completion_fails_competing_orders(client, auth_headers, create_listing, session_factory):
    listing = await create_listing(owner="seller", publish=True)
    first = (await _buy(client, auth_headers, listing["id"], buyer="first")).json()["data"]["orderId"]
    second = (await _buy(client, auth_headers, listing["id"], buyer="second")).json()["data"]["orderId"]

    response = await client.post(f"{MARKETPLACE}/orders/{first}/complete", headers=auth_headers("seller"))
    assert response.status_code == 200

    response = await client.get(f"{MARKETPLACE}/orders/{second}", headers=auth_headers("second"))
    assert response.json()["data"]["status"] == "FAILED"
    events = await _order_events(session_factory, second)
    assert [(event.event_type, event.metadata_json) for event in events] == [
        ("CREATED", {"priceCents": 12500}),
        ("FAILED", {"reason": "LISTING_SOLD"}),
    ]

    # The listing is no longer for sale
    response = await _buy(client, auth_headers, listing["id"], buyer="third")
    assert response.status_code == 409


async def test_completion_rolls_back_without_stock(client, auth_headers, create_listing, add_to_collection, session_factory):
    await add_to_collection("seller", "base1-4", 1)
    listing = await create_listing(owner="seller", publish=True, cardId="base1-4", quantity=2)
    order_id = (await _buy(client, auth_headers, listing["id"])).json()["data"]["orderId"]

    response = await client.post(f"{MARKETPLACE}/orders/{order_id}/complete", headers=auth_headers("seller"))
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INSUFFICIENT_QUANTITY"

    async with session_factory() as session:
        order = await session.get(PurchaseOrder, order_id)
    assert order.status == "PENDING"
    response = await client.get(f"{MARKETPLACE}/listings/{listing['id']}")
    assert response.json()["data"]["status"] == "PUBLISHED"


async def test_concurrent_completions_sell_once(
    client, auth_headers, create_listing, add_to_collection, session_factory
):
    await add_to_collection("seller", "base1-4", 1)
    listing = await create_listing(owner="seller", publish=True, cardId="base1-4", quantity=1)
    orders = [
        (await _buy(client, auth_headers, listing["id"], buyer=buyer)).json()["data"]["orderId"]
        for buyer in ("first", "second")
    ]

    responses = await asyncio.gather(
        *[
            client.post(f"{MARKETPLACE}/orders/{order_id}/complete", headers=auth_headers("seller"))
            for order_id in orders
        ]
    )
    assert sorted(response.status_code for response in responses) == [200, 409]

    async with session_factory() as session:
        statuses = sorted(
            (await session.execute(select(PurchaseOrder.status))).scalars().all()
        )
        collection_rows = (await session.execute(select(CollectionItem))).scalars().all()
        sold_events = (
            await session.execute(select(ListingEvent).where(ListingEvent.event_type == "SOLD"))
        ).scalars().all()
    assert statuses == ["COMPLETED", "FAILED"]
    assert collection_rows == []
    assert len(sold_events) == 1


async def test_orders_pagination(client, auth_headers, create_listing):
    for n in range(3):
        listing = await create_listing(owner="seller", publish=True, title=f"Card {n}")
        await _buy(client, auth_headers, listing["id"])

    response = await client.get(f"{MARKETPLACE}/me/purchases", params={"limit": 2}, headers=auth_headers("buyer"))
    first = response.json()["data"]
    assert len(first["items"]) == 2
    assert first["nextCursor"]

    response = await client.get(
        f"{MARKETPLACE}/me/purchases",
        params={"limit": 2, "cursor": first["nextCursor"]},
        headers=auth_headers("buyer"),
    )
    second = response.json()["data"]
    assert len(second["items"]) == 1
    assert second["nextCursor"] is None
    ids = [item["id"] for item in first["items"] + second["items"]]
    assert len(set(ids)) == 3
