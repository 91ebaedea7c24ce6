"""
Card-form payment path: synchronous charge fed through reconciliation.
"""
from decimal import Decimal

import pytest

from conftest import BUYER_ID, BUYER_PLAYER_ID, add_item, auth_headers, fetch_all, fetch_one
from marketplace.core.errors import GatewayRejected, GatewayUnavailable
from marketplace.models import CartLine, CatalogItem, DeliveryRecord, Order, OrderStatus, PaymentMethod
from marketplace.schemas.payment import GatewayPaymentStatus


def _card_payload(**overrides):
    payload = {
        "player_id": BUYER_PLAYER_ID,
        "token": "ff8080814c11e237014c1ff593b57b4d",
        "payment_method_id": "visa",
        "issuer_id": 310,
        "installments": 1,
        "payer": {"email": "buyer@example.com", "identification": {"type": "DNI", "number": "12345678"}},
    }
    payload.update(overrides)
    return payload


async def _cart_with(client, database, price="30.00", stock=5, quantity=2):
    item = await add_item(database, price=Decimal(price), stock=stock)
    r = await client.post(
        "/marketplace/cart",
        json={"market_item_id": item.id, "quantity": quantity},
        headers=auth_headers(BUYER_ID),
    )
    assert r.status_code == 201
    return item


@pytest.mark.asyncio
async def test_approved_card_payment_delivers_immediately(client, database, gateway):
    item = await _cart_with(client, database)

    r = await client.post(
        "/marketplace/process-payment", json=_card_payload(transaction_amount="60.00"), headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["order_status"] == "delivered"
    assert body["payment"]["status"] == "approved"

    order = await fetch_one(database, Order, body["order_id"])
    assert order.payment_method == PaymentMethod.GATEWAY_CARD
    assert order.payment_id == f"card-{order.id}"
    assert gateway.charges == [(order.id, Decimal("60.00"))]
    assert (await fetch_one(database, CatalogItem, item.id)).stock == 3
    assert await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID) == []
    assert len(await fetch_all(database, DeliveryRecord, DeliveryRecord.order_id == order.id)) == 1


@pytest.mark.asyncio
async def test_rejected_card_cancels_order_and_keeps_cart(client, database, gateway):
    item = await _cart_with(client, database)
    gateway.card_status = GatewayPaymentStatus.REJECTED
    gateway.card_status_detail = "cc_rejected_insufficient_amount"

    r = await client.post("/marketplace/process-payment", json=_card_payload(), headers=auth_headers(BUYER_ID))
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["order_status"] == "cancelled"
    assert body["message"] == "cc_rejected_insufficient_amount"

    assert (await fetch_one(database, CatalogItem, item.id)).stock == 5
    assert len(await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)) == 1


@pytest.mark.asyncio
async def test_provider_validation_error_rolls_back_the_order(client, database, gateway):
    await _cart_with(client, database)
    gateway.fail_with = GatewayRejected("Invalid card token", status_detail="Invalid card token")

    r = await client.post("/marketplace/process-payment", json=_card_payload(), headers=auth_headers(BUYER_ID))
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid card token"
    assert await fetch_all(database, Order, Order.account_id == BUYER_ID) == []
    assert len(await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)) == 1


@pytest.mark.asyncio
async def test_client_amount_must_match_server_total(client, database, gateway):
    await _cart_with(client, database)

    r = await client.post(
        "/marketplace/process-payment", json=_card_payload(transaction_amount="1.00"), headers=auth_headers(BUYER_ID)
    )
    assert r.status_code == 400
    assert r.json()["expected"] == "60.00"
    assert gateway.charges == []
    assert await fetch_all(database, Order, Order.account_id == BUYER_ID) == []


@pytest.mark.asyncio
async def test_in_process_card_payment_stays_pending(client, database, gateway):
    await _cart_with(client, database)
    gateway.card_status = GatewayPaymentStatus.IN_PROCESS
    gateway.card_status_detail = "pending_review_manual"

    r = await client.post("/marketplace/process-payment", json=_card_payload(), headers=auth_headers(BUYER_ID))
    body = r.json()
    assert body["success"] is False
    assert body["order_status"] == OrderStatus.PENDING.value
    assert body["message"] == "Payment is being processed"


@pytest.mark.asyncio
async def test_charge_without_an_answer_leaves_the_order_pending_for_the_webhook(client, database, gateway):
    item = await _cart_with(client, database)
    gateway.fail_with = GatewayUnavailable()

    r = await client.post("/marketplace/process-payment", json=_card_payload(), headers=auth_headers(BUYER_ID))
    assert r.status_code == 502
    order_id = r.json()["order_id"]

    order = await fetch_one(database, Order, order_id)
    assert order.status == OrderStatus.PENDING
    assert order.payment_method == PaymentMethod.GATEWAY_CARD
    assert order.payment_id is None
    assert len(await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID)) == 1

    # the provider did capture the charge; its notification settles the kept order
    gateway.fail_with = None
    gateway.set_payment("9009", order_id, "approved", "60.00")
    r = await client.post("/marketplace/mp/webhook", json={"type": "payment", "data": {"id": "9009"}})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "delivered"

    assert (await fetch_one(database, Order, order_id)).payment_id == "9009"
    assert (await fetch_one(database, CatalogItem, item.id)).stock == 3
    assert await fetch_all(database, CartLine, CartLine.account_id == BUYER_ID) == []
    assert len(await fetch_all(database, DeliveryRecord, DeliveryRecord.order_id == order_id)) == 1
