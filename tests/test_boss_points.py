"""
Boss points exchange: balance debit, stock, concurrency, delivery.
"""
import asyncio

import pytest

from conftest import (
    BUYER_ID, BUYER_PLAYER_ID, OTHER_BUYER_ID, OTHER_PLAYER_ID, add_item, auth_headers, fetch_all, fetch_one,
)
from marketplace.models import Account, BossPointsPurchase, CatalogItem, DeliveryRecord, DeliverySource, OrderStatus
from marketplace.models import PlayerDepotItem


async def _bp_item(database, **overrides):
    values = {"name": "Boss Trophy", "redeemable_with_bp": True, "bp_price": 60}
    values.update(overrides)
    return await add_item(database, **values)


@pytest.mark.asyncio
async def test_purchase_debits_balance_and_delivers(client, database):
    item = await _bp_item(database, stock=3)

    r = await client.post(
        "/boss-points/purchase", json={"item_id": item.id, "player_id": BUYER_PLAYER_ID}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["new_balance"] == 40
    assert body["delivered"] is True
    assert body["item"] == "Boss Trophy"

    assert (await fetch_one(database, Account, BUYER_ID)).boss_points == 40
    assert (await fetch_one(database, CatalogItem, item.id)).stock == 2

    purchase = await fetch_one(database, BossPointsPurchase, body["purchase_id"])
    assert purchase.status == OrderStatus.DELIVERED
    assert purchase.points_spent == 60

    records = await fetch_all(
        database, DeliveryRecord,
        DeliveryRecord.source == DeliverySource.BOSS_POINTS, DeliveryRecord.order_id == purchase.id,
    )
    assert len(records) == 1
    depot = await fetch_all(database, PlayerDepotItem, PlayerDepotItem.player_id == BUYER_PLAYER_ID)
    assert [(d.itemtype, d.count) for d in depot] == [(2494, 1)]


@pytest.mark.asyncio
async def test_insufficient_balance_reports_required_and_current(client, database):
    item = await _bp_item(database, bp_price=150)

    r = await client.post(
        "/boss-points/purchase", json={"item_id": item.id, "player_id": BUYER_PLAYER_ID}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Insufficient boss points"
    assert body["required"] == 150
    assert body["current"] == 100
    assert (await fetch_one(database, Account, BUYER_ID)).boss_points == 100


@pytest.mark.asyncio
async def test_item_must_be_redeemable(client, database):
    item = await add_item(database)

    r = await client.post(
        "/boss-points/purchase", json={"item_id": item.id, "player_id": BUYER_PLAYER_ID}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 404
    assert r.json()["error"] == "Item not available for Boss Points"


@pytest.mark.asyncio
async def test_cannot_deliver_to_another_accounts_character(client, database):
    item = await _bp_item(database)

    r = await client.post(
        "/boss-points/purchase", json={"item_id": item.id, "player_id": OTHER_PLAYER_ID}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 403
    assert (await fetch_one(database, Account, BUYER_ID)).boss_points == 100
    assert await fetch_all(database, BossPointsPurchase) == []


@pytest.mark.asyncio
async def test_concurrent_purchases_of_last_unit_sell_it_once(client, database):
    item = await _bp_item(database, stock=1, bp_price=10)

    responses = await asyncio.gather(
        client.post(
            "/boss-points/purchase",
            json={"item_id": item.id, "player_id": BUYER_PLAYER_ID},
            headers=auth_headers(BUYER_ID),
        ),
        client.post(
            "/boss-points/purchase",
            json={"item_id": item.id, "player_id": OTHER_PLAYER_ID},
            headers=auth_headers(OTHER_BUYER_ID),
        ),
    )
    assert sorted(r.status_code for r in responses) == [200, 400]
    assert (await fetch_one(database, CatalogItem, item.id)).stock == 0
    assert len(await fetch_all(database, BossPointsPurchase)) == 1


@pytest.mark.asyncio
async def test_concurrent_purchases_never_overdraw_balance(client, database):
    item = await _bp_item(database, bp_price=60)
    headers = auth_headers(BUYER_ID)
    payload = {"item_id": item.id, "player_id": BUYER_PLAYER_ID}

    responses = await asyncio.gather(*(client.post("/boss-points/purchase", json=payload, headers=headers) for _ in range(3)))

    assert sorted(r.status_code for r in responses) == [200, 400, 400]
    assert (await fetch_one(database, Account, BUYER_ID)).boss_points == 40


@pytest.mark.asyncio
async def test_shop_is_public_and_lists_redeemable_items(client, database):
    cheap = await _bp_item(database, name="Small Trophy", bp_price=5)
    pricey = await _bp_item(database, name="Large Trophy", bp_price=80)
    await _bp_item(database, name="Sold Out Trophy", stock=0)
    await _bp_item(database, name="Retired Trophy", is_active=False)
    await add_item(database, name="Cash Only Set")

    r = await client.get("/boss-points/shop")
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["items"]] == [cheap.id, pricey.id]


@pytest.mark.asyncio
async def test_account_views(client, database):
    item = await _bp_item(database, bp_price=25)
    headers = auth_headers(BUYER_ID)
    await client.post("/boss-points/purchase", json={"item_id": item.id, "player_id": BUYER_PLAYER_ID}, headers=headers)

    r = await client.get("/boss-points/balance", headers=headers)
    assert r.json() == {"success": True, "boss_points": 75}

    r = await client.get("/boss-points/characters", headers=headers)
    assert [c["name"] for c in r.json()["characters"]] == ["Sir Buyer"]

    r = await client.get("/boss-points/purchases", headers=headers)
    purchases = r.json()["purchases"]
    assert len(purchases) == 1
    assert purchases[0]["points_spent"] == 25
    assert purchases[0]["status"] == "delivered"

    r = await client.get("/boss-points/purchases", headers=auth_headers(OTHER_BUYER_ID))
    assert r.json()["purchases"] == []

    assert (await client.get("/boss-points/balance")).status_code == 401


@pytest.mark.asyncio
async def test_unit_held_by_a_pending_order_cannot_be_bought_with_points(client, database):
    item = await _bp_item(database, stock=1, bp_price=10)
    r = await client.post(
        "/marketplace/cart", json={"market_item_id": item.id, "quantity": 1}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 201
    r = await client.post(
        "/marketplace/checkout", json={"player_id": BUYER_PLAYER_ID}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 201, r.text

    r = await client.post(
        "/boss-points/purchase",
        json={"item_id": item.id, "player_id": OTHER_PLAYER_ID},
        headers=auth_headers(OTHER_BUYER_ID),
    )
    assert r.status_code == 400
    assert r.json()["available"] == 0
    assert (await fetch_one(database, CatalogItem, item.id)).stock == 1
    assert (await fetch_one(database, Account, OTHER_BUYER_ID)).boss_points == 100
    assert await fetch_all(database, BossPointsPurchase) == []
