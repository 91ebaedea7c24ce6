"""
Marketplace — Catalog schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from marketplace.schemas.bundle import BundledItem, WeaponOption

Price = Field(..., ge=0, max_digits=10, decimal_places=2)


class CatalogItemOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    image_url: str | None = None
    price: Decimal
    stock: int
    category: str
    is_active: bool
    featured: bool
    items_json: list[BundledItem]
    weapon_options: list[WeaponOption] | None = None
    bp_price: int | None = None
    redeemable_with_bp: bool = False
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CatalogItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    image_url: str | None = Field(None, max_length=512)
    price: Decimal = Price
    category: str = Field(..., min_length=1, max_length=64)
    stock: int = Field(-1, ge=-1)
    featured: bool = False
    is_active: bool = True
    items_json: list[BundledItem] = Field(..., min_length=1)
    weapon_options: list[WeaponOption] | None = None
    bp_price: int | None = Field(None, ge=1)
    redeemable_with_bp: bool = False

    @model_validator(mode="after")
    def _bp_price_required(self):
        if self.redeemable_with_bp and self.bp_price is None:
            raise ValueError("bp_price is required when redeemable_with_bp is set")
        return self


class CatalogItemUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    image_url: str | None = Field(None, max_length=512)
    price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    category: str | None = Field(None, min_length=1, max_length=64)
    stock: int | None = Field(None, ge=-1)
    featured: bool | None = None
    is_active: bool | None = None
    items_json: list[BundledItem] | None = Field(None, min_length=1)
    weapon_options: list[WeaponOption] | None = None
    bp_price: int | None = Field(None, ge=1)
    redeemable_with_bp: bool | None = None


class CatalogItemList(BaseModel):
    success: bool = True
    items: list[CatalogItemOut]


class CatalogItemResponse(BaseModel):
    success: bool = True
    item: CatalogItemOut
