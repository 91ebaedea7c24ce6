"""
Marketplace — Storefront API

Flow:
  1. Public catalog reads
  2. Cart CRUD for the authenticated account
  3. Checkout (hosted redirect) or card payment, both producing a pending order
  4. Gateway webhook driving the order to approved/cancelled and delivery
"""
import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError

from marketplace.api.deps import (
    get_cart_service, get_catalog_service, get_checkout_service, get_current_account,
    get_reconciliation_service,
)
from marketplace.core.errors import Validation
from marketplace.models import Account
from marketplace.schemas.cart import CartAddRequest, CartOut, CartUpdateRequest
from marketplace.schemas.catalog import CatalogItemList, CatalogItemOut, CatalogItemResponse
from marketplace.schemas.order import (
    CardPaymentRequest, CardPaymentResponse, CheckoutRequest, CheckoutResponse, OrderDetailResponse, OrderList,
)
from marketplace.schemas.payment import WebhookEnvelope
from marketplace.services.cart_service import CartService
from marketplace.services.catalog_service import CatalogService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/marketplace", tags=["marketplace"])


# ── Catalog ───────────────────────────────────────────────────────────────────

@router.get("/items", response_model=CatalogItemList)
async def list_items(
    category: str | None = None,
    featured: bool | None = None,
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Active, in-stock items; featured first."""
    items = await catalog.list_items(category=category, featured=featured)
    return CatalogItemList(items=[CatalogItemOut.model_validate(item) for item in items])


@router.get("/items/{item_id}", response_model=CatalogItemResponse)
async def get_item(item_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    return CatalogItemResponse(item=CatalogItemOut.model_validate(await catalog.get_item(item_id)))


# ── Cart ──────────────────────────────────────────────────────────────────────

@router.get("/cart", response_model=CartOut)
async def read_cart(
    account: Account = Depends(get_current_account),
    cart: CartService = Depends(get_cart_service),
):
    return await cart.read(account.id)


@router.post("/cart", status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    payload: CartAddRequest,
    account: Account = Depends(get_current_account),
    cart: CartService = Depends(get_cart_service),
):
    line = await cart.add(account.id, payload.market_item_id, payload.quantity, payload.selected_weapon_id)
    return {
        "success": True,
        "message": "Item added to cart",
        "cart_item_id": line.id,
        "quantity": line.quantity,
    }


@router.put("/cart/{line_id}")
async def update_cart_line(
    line_id: int,
    payload: CartUpdateRequest,
    account: Account = Depends(get_current_account),
    cart: CartService = Depends(get_cart_service),
):
    line = await cart.update(account.id, line_id, payload.quantity)
    return {"success": True, "message": "Cart updated", "cart_item_id": line.id, "quantity": line.quantity}


@router.delete("/cart/{line_id}")
async def remove_cart_line(
    line_id: int,
    account: Account = Depends(get_current_account),
    cart: CartService = Depends(get_cart_service),
):
    await cart.remove(account.id, line_id)
    return {"success": True, "message": "Item removed from cart"}


@router.delete("/cart")
async def clear_cart(
    account: Account = Depends(get_current_account),
    cart: CartService = Depends(get_cart_service),
):
    await cart.clear(account.id)
    return {"success": True, "message": "Cart cleared"}


# ── Checkout & payment ────────────────────────────────────────────────────────

@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutRequest,
    account: Account = Depends(get_current_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    """Create a pending order from the cart and a hosted payment session for it."""
    return await checkout_service.checkout(account.id, payload.player_id)


@router.post("/process-payment", response_model=CardPaymentResponse)
async def process_payment(
    payload: CardPaymentRequest,
    account: Account = Depends(get_current_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    return await checkout_service.process_card_payment(account.id, payload)


@router.post("/mp/webhook")
async def payment_webhook(
    request: Request,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    MercadoPago notification. Only the topic and the payment id are read,
    from the JSON body or the query string; the payment itself is always
    fetched again from the gateway.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    try:
        envelope = WebhookEnvelope.model_validate(body if isinstance(body, dict) else {})
    except ValidationError:
        envelope = WebhookEnvelope()

    params = request.query_params
    topic = envelope.type or params.get("type") or params.get("topic")
    payment_id = (envelope.data.id if envelope.data else None) or params.get("data.id") or params.get("id")

    if topic is not None and topic != "payment":
        logger.info("Ignoring MercadoPago notification of type %s", topic)
        return {"received": True}
    if payment_id is None or str(payment_id).strip() == "":
        logger.warning("MercadoPago notification without payment id (query=%s)", dict(params))
        raise Validation("Notification carries no payment id")

    order = await reconciliation.on_payment_event(str(payment_id).strip())
    return {"received": True, "order_id": order.id, "status": order.status.value}


# ── Order history ─────────────────────────────────────────────────────────────

@router.get("/orders", response_model=OrderList)
async def list_orders(
    account: Account = Depends(get_current_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    return OrderList(orders=await checkout_service.list_orders(account.id))


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: int,
    account: Account = Depends(get_current_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
    return OrderDetailResponse(order=await checkout_service.get_order(account.id, order_id))
