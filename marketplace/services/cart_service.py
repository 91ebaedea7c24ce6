"""
Marketplace — Cart manager

One line per (account, catalog item). Prices are never stored on the line;
reads join live against market_items and hide lines whose item went inactive.
"""
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import InvalidSelection, NotFound, OutOfStock
from marketplace.core.money import line_total, sum_money
from marketplace.core.retry import retry_on_conflict
from marketplace.db.database import Database
from marketplace.models import CartLine, CatalogItem, Order, OrderItem, OrderStatus
from marketplace.schemas.cart import CartLineOut, CartOut

logger = logging.getLogger(__name__)


def validate_weapon_choice(item: CatalogItem, selected_weapon_id: int | None) -> None:
    if not item.requires_weapon:
        return
    if selected_weapon_id is None:
        raise InvalidSelection(item=item.name)
    if item.weapon_option(selected_weapon_id) is None:
        raise InvalidSelection(
            "Selected weapon is not available for this item",
            item=item.name,
            selected_weapon_id=selected_weapon_id,
        )


def out_of_stock(item: CatalogItem, available: int | None = None) -> OutOfStock:
    available = item.stock if available is None else available
    return OutOfStock(
        f"Insufficient stock for '{item.name}'",
        item=item.name,
        market_item_id=item.id,
        available=max(available, 0),
    )


class CartService:
    def __init__(self, db: Database):
        self.db = db

    async def add(
        self, account_id: int, market_item_id: int, quantity: int, selected_weapon_id: int | None = None
    ) -> CartLine:
        """
        Add `quantity` units to the cart, merging into an existing line.
        The stock check is against the resulting line quantity.
        """
        return await retry_on_conflict(
            lambda: self._add_once(account_id, market_item_id, quantity, selected_weapon_id),
            f"Cart add of item {market_item_id} for account {account_id}",
        )

    async def _add_once(
        self, account_id: int, market_item_id: int, quantity: int, selected_weapon_id: int | None
    ) -> CartLine:
        async with self.db.transaction() as session:
            item = await self._active_item(session, market_item_id)
            validate_weapon_choice(item, selected_weapon_id)

            result = await session.execute(
                select(CartLine)
                .where(CartLine.account_id == account_id, CartLine.market_item_id == market_item_id)
                .with_for_update()
            )
            line = result.scalar_one_or_none()
            resulting = quantity + (line.quantity if line else 0)
            if not item.has_stock_for(resulting):
                raise out_of_stock(item)

            if line is None:
                line = CartLine(
                    account_id=account_id,
                    market_item_id=market_item_id,
                    quantity=quantity,
                    selected_weapon_id=selected_weapon_id,
                )
                session.add(line)
            else:
                line.quantity = resulting
                line.selected_weapon_id = selected_weapon_id
            # A concurrent first-add surfaces here as IntegrityError and is retried as a merge.
            await session.flush()

        logger.info("Account %s cart: item %s -> qty %d", account_id, market_item_id, line.quantity)
        return line

    async def update(self, account_id: int, line_id: int, quantity: int) -> CartLine:
        async with self.db.transaction() as session:
            line = await self._own_line(session, account_id, line_id)
            item = await self._active_item(session, line.market_item_id)
            if not item.has_stock_for(quantity):
                raise out_of_stock(item)
            line.quantity = quantity
            return line

    async def remove(self, account_id: int, line_id: int) -> None:
        async with self.db.transaction() as session:
            await session.execute(
                delete(CartLine).where(CartLine.id == line_id, CartLine.account_id == account_id)
            )

    async def clear(self, account_id: int) -> None:
        async with self.db.transaction() as session:
            await clear_cart(session, account_id)

    async def read(self, account_id: int) -> CartOut:
        async with self.db.session() as session:
            rows = (await session.execute(active_lines_query(account_id))).all()

        lines = [
            CartLineOut(
                id=line.id,
                market_item_id=item.id,
                name=item.name,
                description=item.description,
                image_url=item.image_url,
                category=item.category,
                price=item.price,
                stock=item.stock,
                quantity=line.quantity,
                selected_weapon_id=line.selected_weapon_id,
                items_json=item.items_json,
                subtotal=line_total(item.price, line.quantity),
            )
            for line, item in rows
        ]
        return CartOut(cart=lines, total=sum_money(line.subtotal for line in lines))

    async def _active_item(self, session: AsyncSession, market_item_id: int) -> CatalogItem:
        item = await session.get(CatalogItem, market_item_id)
        if item is None or not item.is_active:
            raise NotFound("Item not found or not available", market_item_id=market_item_id)
        return item

    async def _own_line(self, session: AsyncSession, account_id: int, line_id: int) -> CartLine:
        result = await session.execute(
            select(CartLine).where(CartLine.id == line_id, CartLine.account_id == account_id)
        )
        line = result.scalar_one_or_none()
        if line is None:
            raise NotFound("Cart item not found", cart_item_id=line_id)
        return line


def active_lines_query(account_id: int):
    """Cart lines joined with their still-active catalog items, oldest first."""
    return (
        select(CartLine, CatalogItem)
        .join(CatalogItem, CatalogItem.id == CartLine.market_item_id)
        .where(CartLine.account_id == account_id, CatalogItem.is_active.is_(True))
        .order_by(CartLine.created_at, CartLine.id)
    )


async def clear_cart(session: AsyncSession, account_id: int) -> None:
    await session.execute(delete(CartLine).where(CartLine.account_id == account_id))


async def held_quantity(session: AsyncSession, market_item_id: int) -> int:
    """Units of an item set aside by pending orders of any account."""
    result = await session.execute(
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(OrderItem.market_item_id == market_item_id, Order.status == OrderStatus.PENDING)
    )
    return int(result.scalar_one())


async def available_stock(session: AsyncSession, item: CatalogItem) -> int | None:
    """Stock left for a new sale once pending orders are held back; None when unlimited."""
    if item.unlimited:
        return None
    return item.stock - await held_quantity(session, item.id)
