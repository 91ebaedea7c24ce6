"""
Marketplace — Order and checkout schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from marketplace.models.order import OrderStatus, PaymentMethod
from marketplace.schemas.bundle import BundledItem
from marketplace.schemas.payment import CardCharge, GatewayPaymentStatus


class CheckoutRequest(BaseModel):
    player_id: int = Field(..., gt=0)


class CheckoutResponse(BaseModel):
    success: bool = True
    order_id: int
    total: Decimal
    preference_id: str
    init_point: str
    sandbox_init_point: str | None = None


class CardPaymentRequest(CardCharge):
    player_id: int = Field(..., gt=0)
    # Informational only: the charged amount is always the server-side cart total.
    transaction_amount: Decimal | None = Field(None, ge=0)
    description: str | None = Field(None, max_length=255)


class PaymentSummary(BaseModel):
    id: str
    status: GatewayPaymentStatus
    status_detail: str | None = None


class CardPaymentResponse(BaseModel):
    success: bool
    order_id: int
    order_status: OrderStatus
    payment: PaymentSummary
    message: str


class OrderItemOut(BaseModel):
    id: int
    market_item_id: int
    item_name: str
    quantity: int
    price: Decimal
    selected_weapon_id: int | None = None
    items_json: list[BundledItem]

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    account_id: int
    player_id: int
    player_name: str | None = None
    total_amount: Decimal
    status: OrderStatus
    payment_method: PaymentMethod
    preference_id: str | None = None
    payment_id: str | None = None
    created_at: datetime | None = None
    delivered_at: datetime | None = None
    total_items: int = 0


class OrderDetailOut(OrderOut):
    items: list[OrderItemOut]


class OrderList(BaseModel):
    success: bool = True
    orders: list[OrderOut]


class OrderDetailResponse(BaseModel):
    success: bool = True
    order: OrderDetailOut


class AdminOrderOut(OrderOut):
    account_email: str | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderStats(BaseModel):
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    pending_count: int = 0
    approved_count: int = 0
    delivered_count: int = 0
    cancelled_count: int = 0
    refunded_count: int = 0


class AdminOrderPage(BaseModel):
    success: bool = True
    orders: list[AdminOrderOut]
    pagination: Pagination
    stats: OrderStats


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class UndeliveredEntry(BaseModel):
    source: str
    reference_id: int
    account_id: int
    player_id: int
    status: OrderStatus
    created_at: datetime | None = None


class UndeliveredReport(BaseModel):
    success: bool = True
    entries: list[UndeliveredEntry]


class SweepResult(BaseModel):
    success: bool = True
    examined: int = 0
    approved: int = 0
    cancelled: int = 0
    still_pending: int = 0
    delivered: int = 0
    failed: int = 0


class ExpireRequest(BaseModel):
    older_than_minutes: int = Field(..., ge=1, le=60 * 24 * 90)


class OrderStatusResponse(BaseModel):
    success: bool = True
    order_id: int
    status: OrderStatus
