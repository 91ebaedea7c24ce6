"""
Marketplace — Cart schemas
"""
from decimal import Decimal

from pydantic import BaseModel, Field

from marketplace.schemas.bundle import BundledItem


class CartAddRequest(BaseModel):
    market_item_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=1000)
    selected_weapon_id: int | None = None


class CartUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=1, le=1000)


class CartLineOut(BaseModel):
    id: int
    market_item_id: int
    name: str
    description: str | None = None
    image_url: str | None = None
    category: str
    price: Decimal
    stock: int
    quantity: int
    selected_weapon_id: int | None = None
    items_json: list[BundledItem]
    subtotal: Decimal


class CartOut(BaseModel):
    success: bool = True
    cart: list[CartLineOut]
    total: Decimal
