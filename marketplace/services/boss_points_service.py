"""
Marketplace — Boss Points exchange

Synchronous purchase path that spends the in-game boss-points balance
instead of money. The account row is locked for the whole debit, so two
concurrent purchases can never both pass the balance check.
"""
import logging

from sqlalchemy import select

from marketplace.core.errors import InsufficientBalance, NotFound
from marketplace.db.database import Database
from marketplace.models import BossPointsPurchase, CatalogItem, DeliverySource, OrderStatus, UNLIMITED_STOCK
from marketplace.schemas.boss_points import PurchaseResponse
from marketplace.services.accounts import get_account, list_characters, owned_character
from marketplace.services.cart_service import available_stock, out_of_stock, validate_weapon_choice
from marketplace.services.delivery_service import DeliveryService

logger = logging.getLogger(__name__)

PURCHASE_HISTORY_LIMIT = 50


class BossPointsService:
    def __init__(self, db: Database, delivery: DeliveryService):
        self.db = db
        self.delivery = delivery

    async def purchase(
        self, account_id: int, item_id: int, player_id: int, selected_weapon_id: int | None = None
    ) -> PurchaseResponse:
        async with self.db.transaction() as session:
            account = await get_account(session, account_id, for_update=True)

            item = await session.get(CatalogItem, item_id, with_for_update=True)
            if item is None or not item.is_active or not item.redeemable_with_bp or item.bp_price is None:
                raise NotFound("Item not available for Boss Points", item_id=item_id)
            # Units held by pending money orders are not for sale here either.
            available = await available_stock(session, item)
            if available is not None and available < 1:
                raise out_of_stock(item, available)

            player = await owned_character(session, account_id, player_id)
            validate_weapon_choice(item, selected_weapon_id)

            if account.boss_points < item.bp_price:
                raise InsufficientBalance(required=item.bp_price, current=account.boss_points)

            account.boss_points -= item.bp_price
            if item.stock != UNLIMITED_STOCK:
                item.stock -= 1

            purchase = BossPointsPurchase(
                account_id=account_id,
                player_id=player.id,
                player_name=player.name,
                market_item_id=item.id,
                item_name=item.name,
                points_spent=item.bp_price,
                selected_weapon_id=selected_weapon_id,
                items_json=item.frozen_bundle(selected_weapon_id),
                status=OrderStatus.APPROVED,
            )
            session.add(purchase)
            await session.flush()
            new_balance = account.boss_points

        logger.info(
            "Account %s spent %d boss points on item %s for player %s (purchase %s)",
            account_id, purchase.points_spent, item_id, player_id, purchase.id,
        )

        # The debit is committed; a failed delivery is picked up by the redelivery sweep.
        delivered = True
        try:
            await self.delivery.deliver(player.id, purchase.items_json, purchase.id, DeliverySource.BOSS_POINTS)
        except Exception:
            logger.exception("Delivery failed for boss points purchase %s", purchase.id)
            delivered = False

        return PurchaseResponse(
            message=f"Purchased {purchase.item_name}" if delivered
            else f"Purchased {purchase.item_name}, delivery pending",
            purchase_id=purchase.id,
            item=purchase.item_name,
            new_balance=new_balance,
            delivered=delivered,
        )

    async def balance(self, account_id: int) -> int:
        async with self.db.session() as session:
            account = await get_account(session, account_id)
            return account.boss_points

    async def shop(self) -> list[CatalogItem]:
        async with self.db.session() as session:
            result = await session.execute(
                select(CatalogItem)
                .where(
                    CatalogItem.is_active.is_(True),
                    CatalogItem.redeemable_with_bp.is_(True),
                    CatalogItem.bp_price.is_not(None),
                    CatalogItem.stock != 0,
                )
                .order_by(CatalogItem.bp_price, CatalogItem.name)
            )
            return list(result.scalars().all())

    async def characters(self, account_id: int):
        async with self.db.session() as session:
            return await list_characters(session, account_id)

    async def purchases(self, account_id: int) -> list[BossPointsPurchase]:
        async with self.db.session() as session:
            result = await session.execute(
                select(BossPointsPurchase)
                .where(BossPointsPurchase.account_id == account_id)
                .order_by(BossPointsPurchase.created_at.desc(), BossPointsPurchase.id.desc())
                .limit(PURCHASE_HISTORY_LIMIT)
            )
            return list(result.scalars().all())
