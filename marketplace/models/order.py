"""
Marketplace — Order ledger models

[TRANSACTIONAL DATA] — orders are only transitioned, never deleted, with one
exception: a card order whose charge the provider refused before creating a
payment is discarded. order_items freeze the bundle at checkout time; payment_logs are append-only.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import String, Integer, DateTime, Numeric, Text, ForeignKey, JSON, Enum, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.core.errors import IllegalTransition
from marketplace.db.database import Base
from marketplace.db.types import PydanticJSON
from marketplace.schemas.bundle import BundledItem


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, PyEnum):
    GATEWAY_REDIRECT = "gateway_redirect"
    GATEWAY_CARD = "gateway_card"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Manual overrides an administrator may apply from the orders panel.
ADMIN_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.REFUNDED}),
}


def check_transition(current: OrderStatus, target: OrderStatus, table=TRANSITIONS) -> None:
    """Raise IllegalTransition unless current -> target is in the table."""
    current = OrderStatus(current)
    target = OrderStatus(target)
    if target not in table.get(current, frozenset()):
        raise IllegalTransition(
            f"Cannot move order from '{current.value}' to '{target.value}'",
            current=current.value,
            requested=target.value,
        )


def _status_enum(name: str):
    return Enum(
        OrderStatus,
        name=name,
        native_enum=False,
        length=16,
        values_callable=lambda e: [m.value for m in e],
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True, nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        _status_enum("order_status"), default=OrderStatus.PENDING, index=True, nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", native_enum=False, length=24,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    preference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total_amount}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True, nullable=False)
    market_item_id: Mapped[int] = mapped_column(ForeignKey("market_items.id"), index=True, nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # unit price
    selected_weapon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    items_json: Mapped[list[BundledItem]] = mapped_column(
        PydanticJSON(list[BundledItem]), nullable=False
    )

    def delivery_items(self) -> list[BundledItem]:
        """The frozen bundle repeated once per purchased unit."""
        return [item for _ in range(self.quantity) for item in self.items_json]


class PaymentLog(Base):
    """Append-only audit row per payment notification received."""
    __tablename__ = "payment_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="mercadopago")
    payment_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    status_detail: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
