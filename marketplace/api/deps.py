"""
Marketplace — Request dependencies

The JWT middleware has already verified the token and put the account id
on request.state; these dependencies load the account and build services
from the resources created at startup (app.state.database, app.state.gateway).
"""
from fastapi import Depends, Request

from marketplace.core.config import get_settings
from marketplace.core.errors import Forbidden, Unauthenticated
from marketplace.db.database import Database, get_database
from marketplace.models import Account
from marketplace.services.boss_points_service import BossPointsService
from marketplace.services.cart_service import CartService
from marketplace.services.catalog_service import CatalogService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.delivery_service import DeliveryService
from marketplace.services.payment_gateway import MercadoPagoGateway
from marketplace.services.reconciliation_service import ReconciliationService

settings = get_settings()


async def get_current_account(request: Request, db: Database = Depends(get_database)) -> Account:
    account_id = getattr(request.state, "account_id", None)
    if account_id is None:
        raise Unauthenticated()
    async with db.session() as session:
        account = await session.get(Account, account_id)
    if account is None:
        raise Unauthenticated("Account no longer exists")
    return account


async def require_admin(account: Account = Depends(get_current_account)) -> Account:
    if account.group_id < settings.ADMIN_GROUP_ID:
        raise Forbidden("Administrator access required")
    return account


def get_gateway(request: Request) -> MercadoPagoGateway:
    return request.app.state.gateway


def get_catalog_service(db: Database = Depends(get_database)) -> CatalogService:
    return CatalogService(db)


def get_cart_service(db: Database = Depends(get_database)) -> CartService:
    return CartService(db)


def get_delivery_service(db: Database = Depends(get_database)) -> DeliveryService:
    return DeliveryService(db)


def get_reconciliation_service(
    db: Database = Depends(get_database),
    gateway: MercadoPagoGateway = Depends(get_gateway),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, delivery)


def get_checkout_service(
    db: Database = Depends(get_database),
    gateway: MercadoPagoGateway = Depends(get_gateway),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> CheckoutService:
    return CheckoutService(db, gateway, reconciliation)


def get_boss_points_service(
    db: Database = Depends(get_database),
    delivery: DeliveryService = Depends(get_delivery_service),
) -> BossPointsService:
    return BossPointsService(db, delivery)
