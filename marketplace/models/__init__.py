from marketplace.models.game import Account, Player, PlayerDepotItem
from marketplace.models.catalog import CatalogItem, CartLine, UNLIMITED_STOCK
from marketplace.models.order import (
    Order, OrderItem, PaymentLog, OrderStatus, PaymentMethod, TRANSITIONS, ADMIN_TRANSITIONS,
)
from marketplace.models.delivery import DeliveryRecord, DeliverySource
from marketplace.models.boss_points import BossPointsPurchase

__all__ = [
    "Account", "Player", "PlayerDepotItem",
    "CatalogItem", "CartLine", "UNLIMITED_STOCK",
    "Order", "OrderItem", "PaymentLog", "OrderStatus", "PaymentMethod",
    "TRANSITIONS", "ADMIN_TRANSITIONS",
    "DeliveryRecord", "DeliverySource",
    "BossPointsPurchase",
]
