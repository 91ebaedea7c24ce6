"""
Marketplace — Boss Points schemas
"""
from datetime import datetime

from pydantic import BaseModel, Field

from marketplace.models.order import OrderStatus
from marketplace.schemas.catalog import CatalogItemOut


class BalanceOut(BaseModel):
    success: bool = True
    boss_points: int


class ShopOut(BaseModel):
    success: bool = True
    items: list[CatalogItemOut]


class CharacterOut(BaseModel):
    id: int
    name: str
    level: int
    vocation: int

    model_config = {"from_attributes": True}


class CharacterList(BaseModel):
    success: bool = True
    characters: list[CharacterOut]


class PurchaseRequest(BaseModel):
    item_id: int = Field(..., gt=0)
    player_id: int = Field(..., gt=0)
    selected_weapon_id: int | None = None


class PurchaseResponse(BaseModel):
    success: bool = True
    message: str
    purchase_id: int
    item: str
    new_balance: int
    delivered: bool


class PurchaseOut(BaseModel):
    id: int
    player_id: int
    player_name: str
    market_item_id: int
    item_name: str
    points_spent: int
    status: OrderStatus
    created_at: datetime | None = None
    delivered_at: datetime | None = None

    model_config = {"from_attributes": True}


class PurchaseList(BaseModel):
    success: bool = True
    purchases: list[PurchaseOut]
