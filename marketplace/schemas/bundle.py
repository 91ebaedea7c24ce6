"""
Marketplace — Bundle value objects

Shapes stored as JSON in market_items.items_json, market_items.weapon_options,
order_items.items_json and item_deliveries.items_json. Keys keep the camelCase
names the website frontend and existing rows already use.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BundledItem(BaseModel):
    """One in-game item inside a catalog bundle."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    item_id: int = Field(..., alias="itemId", gt=0)
    count: int = Field(1, ge=1, le=10000)
    name: str = Field(..., min_length=1, max_length=255)


class WeaponOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    item_id: int = Field(..., alias="itemId", gt=0)
    name: str = Field(..., min_length=1, max_length=255)


# Delivery works on the same shape as a bundle entry.
DeliveryItem = BundledItem


class DeliveryEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: int
    items: list[DeliveryItem]
    delivered_at: datetime
    player_id: int
