"""
Marketplace — Delivery bookkeeping

[TRANSACTIONAL DATA] — one row per delivered order. The unique key on
(source, order_id) is what makes a second delivery of the same order a no-op.
"""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Integer, Boolean, DateTime, Enum, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.database import Base
from marketplace.db.types import PydanticJSON
from marketplace.schemas.bundle import DeliveryEnvelope


class DeliverySource(str, PyEnum):
    ORDER = "order"
    BOSS_POINTS = "boss_points"


class DeliveryRecord(Base):
    __tablename__ = "item_deliveries"
    __table_args__ = (
        UniqueConstraint("source", "order_id", name="uq_item_deliveries_source_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[DeliverySource] = mapped_column(
        Enum(DeliverySource, name="delivery_source", native_enum=False, length=16,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DeliverySource.ORDER,
    )
    order_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    player_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    items_json: Mapped[DeliveryEnvelope] = mapped_column(PydanticJSON(DeliveryEnvelope), nullable=False)
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
