"""
Marketplace — Boss Points purchase history

[TRANSACTIONAL DATA] — the boss-points variant of an order. Written as
'approved' together with the balance debit, moved to 'delivered' once the
depot write succeeds. Its id is the delivery reference; the bundle is
frozen on the row so a later redelivery hands out what was paid for.
"""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, ForeignKey, Enum, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.database import Base
from marketplace.db.types import PydanticJSON
from marketplace.models.order import OrderStatus
from marketplace.schemas.bundle import BundledItem


class BossPointsPurchase(Base):
    __tablename__ = "boss_points_purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True, nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    player_name: Mapped[str] = mapped_column(String(255), nullable=False)
    market_item_id: Mapped[int] = mapped_column(ForeignKey("market_items.id"), nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_weapon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    items_json: Mapped[list[BundledItem]] = mapped_column(
        PydanticJSON(list[BundledItem]), nullable=False
    )
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="bp_purchase_status", native_enum=False, length=16,
             values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.APPROVED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
