"""
Marketplace — Boss Points API
"""
from fastapi import APIRouter, Depends

from marketplace.api.deps import get_boss_points_service, get_current_account
from marketplace.models import Account
from marketplace.schemas.boss_points import (
    BalanceOut, CharacterList, CharacterOut, PurchaseList, PurchaseOut, PurchaseRequest, PurchaseResponse, ShopOut,
)
from marketplace.schemas.catalog import CatalogItemOut
from marketplace.services.boss_points_service import BossPointsService

router = APIRouter(prefix="/boss-points", tags=["boss-points"])


@router.get("/balance", response_model=BalanceOut)
async def get_balance(
    account: Account = Depends(get_current_account),
    service: BossPointsService = Depends(get_boss_points_service),
):
    return BalanceOut(boss_points=await service.balance(account.id))


@router.get("/shop", response_model=ShopOut)
async def get_shop(service: BossPointsService = Depends(get_boss_points_service)):
    items = await service.shop()
    return ShopOut(items=[CatalogItemOut.model_validate(item) for item in items])


@router.get("/characters", response_model=CharacterList)
async def get_characters(
    account: Account = Depends(get_current_account),
    service: BossPointsService = Depends(get_boss_points_service),
):
    players = await service.characters(account.id)
    return CharacterList(characters=[CharacterOut.model_validate(p) for p in players])


@router.get("/purchases", response_model=PurchaseList)
async def get_purchases(
    account: Account = Depends(get_current_account),
    service: BossPointsService = Depends(get_boss_points_service),
):
    purchases = await service.purchases(account.id)
    return PurchaseList(purchases=[PurchaseOut.model_validate(p) for p in purchases])


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_item(
    payload: PurchaseRequest,
    account: Account = Depends(get_current_account),
    service: BossPointsService = Depends(get_boss_points_service),
):
    """Spend boss points on one unit of a redeemable item, delivered straight to the character's depot."""
    return await service.purchase(account.id, payload.item_id, payload.player_id, payload.selected_weapon_id)
