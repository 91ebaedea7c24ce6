"""
Marketplace — Catalog and cart models

[CONFIG DATA]        market_items — edited by administrators, soft-deactivated
                     once any order references them.
[TRANSACTIONAL DATA] cart_items — one line per (account, item); prices are
                     never copied onto the line.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Numeric, Text, ForeignKey, UniqueConstraint,
    CheckConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.database import Base
from marketplace.db.types import PydanticJSON
from marketplace.schemas.bundle import BundledItem, WeaponOption

UNLIMITED_STOCK = -1


class CatalogItem(Base):
    __tablename__ = "market_items"
    __table_args__ = (
        CheckConstraint("stock >= -1", name="ck_market_items_stock"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=UNLIMITED_STOCK)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    items_json: Mapped[list[BundledItem]] = mapped_column(
        PydanticJSON(list[BundledItem]), nullable=False
    )
    weapon_options: Mapped[list[WeaponOption] | None] = mapped_column(
        PydanticJSON(list[WeaponOption]), nullable=True
    )
    bp_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    redeemable_with_bp: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def unlimited(self) -> bool:
        return self.stock == UNLIMITED_STOCK

    @property
    def requires_weapon(self) -> bool:
        return bool(self.weapon_options)

    def has_stock_for(self, quantity: int) -> bool:
        return self.unlimited or self.stock >= quantity

    def weapon_option(self, item_id: int) -> WeaponOption | None:
        for option in self.weapon_options or []:
            if option.item_id == item_id:
                return option
        return None

    def frozen_bundle(self, selected_weapon_id: int | None = None) -> list[BundledItem]:
        """Bundle snapshot for one unit, with the chosen weapon appended."""
        bundle = list(self.items_json)
        weapon = self.weapon_option(selected_weapon_id) if selected_weapon_id is not None else None
        if weapon is not None:
            bundle.append(BundledItem(item_id=weapon.item_id, count=1, name=weapon.name))
        return bundle

    def __repr__(self) -> str:
        return f"<CatalogItem id={self.id} name={self.name!r} stock={self.stock}>"


class CartLine(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("account_id", "market_item_id", name="uq_cart_items_account_item"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True, nullable=False)
    market_item_id: Mapped[int] = mapped_column(
        ForeignKey("market_items.id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    selected_weapon_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
