"""
Cart manager through the HTTP surface.
"""
from decimal import Decimal

import pytest

from conftest import BUYER_ID, OTHER_BUYER_ID, add_item, auth_headers, fetch_all
from marketplace.models import CartLine


@pytest.mark.asyncio
async def test_cart_requires_authentication(client):
    r = await client.get("/marketplace/cart")
    assert r.status_code == 401
    assert r.json()["error"]


@pytest.mark.asyncio
async def test_adding_same_item_twice_merges_into_one_line(client, database):
    item = await add_item(database, stock=10)
    headers = auth_headers(BUYER_ID)

    r1 = await client.post("/marketplace/cart", json={"market_item_id": item.id, "quantity": 2}, headers=headers)
    r2 = await client.post("/marketplace/cart", json={"market_item_id": item.id, "quantity": 3}, headers=headers)
    assert r1.status_code == 201, r1.text
    assert r2.status_code == 201, r2.text

    lines = await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)
    assert len(lines) == 1
    assert lines[0].quantity == 5


@pytest.mark.asyncio
async def test_add_checks_resulting_quantity_against_stock(client, database):
    item = await add_item(database, stock=4)
    headers = auth_headers(BUYER_ID)

    r = await client.post("/marketplace/cart", json={"market_item_id": item.id, "quantity": 3}, headers=headers)
    assert r.status_code == 201
    r = await client.post("/marketplace/cart", json={"market_item_id": item.id, "quantity": 2}, headers=headers)
    assert r.status_code == 400
    body = r.json()
    assert body["available"] == 4
    assert body["item"] == item.name


@pytest.mark.asyncio
async def test_inactive_or_missing_item_is_not_found(client, database):
    item = await add_item(database, is_active=False)
    headers = auth_headers(BUYER_ID)

    r = await client.post("/marketplace/cart", json={"market_item_id": item.id}, headers=headers)
    assert r.status_code == 404
    r = await client.post("/marketplace/cart", json={"market_item_id": 4242}, headers=headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_weapon_variant_is_required_and_must_be_offered(client, database):
    item = await add_item(
        database,
        name="Starter Weapon Pack",
        weapon_options=[{"itemId": 7390, "name": "Justice Seeker"}, {"itemId": 7434, "name": "Royal Axe"}],
    )
    headers = auth_headers(BUYER_ID)

    r = await client.post("/marketplace/cart", json={"market_item_id": item.id}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Weapon selection is required for this item"

    r = await client.post(
        "/marketplace/cart", json={"market_item_id": item.id, "selected_weapon_id": 1111}, headers=headers
    )
    assert r.status_code == 400

    r = await client.post(
        "/marketplace/cart", json={"market_item_id": item.id, "selected_weapon_id": 7434}, headers=headers
    )
    assert r.status_code == 201


@pytest.mark.asyncio
async def test_read_uses_live_prices_and_hides_inactive_items(client, database):
    cheap = await add_item(database, name="Potion Pack", price=Decimal("33.33"))
    hidden = await add_item(database, name="Retired Mount", price=Decimal("10.00"))
    headers = auth_headers(BUYER_ID)

    await client.post("/marketplace/cart", json={"market_item_id": cheap.id, "quantity": 3}, headers=headers)
    await client.post("/marketplace/cart", json={"market_item_id": hidden.id, "quantity": 1}, headers=headers)

    admin_toggle = await client.patch(f"/admin/marketplace/items/{hidden.id}/toggle", headers=auth_headers(99))
    assert admin_toggle.status_code == 200

    r = await client.get("/marketplace/cart", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert [line["market_item_id"] for line in body["cart"]] == [cheap.id]
    assert body["cart"][0]["subtotal"] == "99.99"
    assert body["total"] == "99.99"

    # the hidden line is kept, not deleted
    assert len(await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)) == 2


@pytest.mark.asyncio
async def test_update_and_remove_only_touch_own_lines(client, database):
    item = await add_item(database, stock=5)
    r = await client.post(
        "/marketplace/cart", json={"market_item_id": item.id, "quantity": 1}, headers=auth_headers(BUYER_ID)
    )
    line_id = r.json()["cart_item_id"]

    r = await client.put(f"/marketplace/cart/{line_id}", json={"quantity": 2}, headers=auth_headers(OTHER_BUYER_ID))
    assert r.status_code == 404

    r = await client.put(f"/marketplace/cart/{line_id}", json={"quantity": 6}, headers=auth_headers(BUYER_ID))
    assert r.status_code == 400

    r = await client.put(f"/marketplace/cart/{line_id}", json={"quantity": 4}, headers=auth_headers(BUYER_ID))
    assert r.status_code == 200
    assert r.json()["quantity"] == 4

    # another account's delete is a silent no-op
    r = await client.delete(f"/marketplace/cart/{line_id}", headers=auth_headers(OTHER_BUYER_ID))
    assert r.status_code == 200
    assert len(await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)) == 1

    r = await client.delete(f"/marketplace/cart/{line_id}", headers=auth_headers(BUYER_ID))
    assert r.status_code == 200
    r = await client.delete(f"/marketplace/cart/{line_id}", headers=auth_headers(BUYER_ID))
    assert r.status_code == 200
    assert await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID) == []


@pytest.mark.asyncio
async def test_clear_is_idempotent(client, database):
    item = await add_item(database)
    headers = auth_headers(BUYER_ID)
    await client.post("/marketplace/cart", json={"market_item_id": item.id, "quantity": 2}, headers=headers)

    assert (await client.delete("/marketplace/cart", headers=headers)).status_code == 200
    assert (await client.delete("/marketplace/cart", headers=headers)).status_code == 200
    r = await client.get("/marketplace/cart", headers=headers)
    assert r.json() == {"success": True, "cart": [], "total": "0.00"}


@pytest.mark.asyncio
async def test_invalid_quantity_is_a_400(client, database):
    item = await add_item(database)
    r = await client.post(
        "/marketplace/cart", json={"market_item_id": item.id, "quantity": 0}, headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request"
