"""
Marketplace — Catalog store

Public reads of the active catalog plus the administrator's catalog and
order oversight. Items referenced by any order are deactivated instead of
deleted so order history keeps pointing at a real row.
"""
import logging
import math

from sqlalchemy import select, func, or_, String, cast

from marketplace.core.errors import NotFound
from marketplace.core.money import format_money, to_money
from marketplace.db.database import Database
from marketplace.models import Account, CatalogItem, Order, OrderItem, OrderStatus, Player
from marketplace.schemas.catalog import CatalogItemCreate, CatalogItemUpdate
from marketplace.schemas.order import AdminOrderOut, AdminOrderPage, OrderStats, Pagination
from marketplace.services.checkout_service import order_out, order_summary_query

logger = logging.getLogger(__name__)

# Orders in these states represent money actually received.
PAID_STATUSES = (OrderStatus.APPROVED, OrderStatus.DELIVERED)


class CatalogService:
    def __init__(self, db: Database):
        self.db = db

    # ── Public ────────────────────────────────────────────────────────────────

    async def list_items(self, category: str | None = None, featured: bool | None = None) -> list[CatalogItem]:
        query = select(CatalogItem).where(CatalogItem.is_active.is_(True), CatalogItem.stock != 0)
        if category:
            query = query.where(CatalogItem.category == category)
        if featured is not None:
            query = query.where(CatalogItem.featured.is_(featured))
        query = query.order_by(CatalogItem.featured.desc(), CatalogItem.created_at.desc(), CatalogItem.id.desc())
        async with self.db.session() as session:
            return list((await session.execute(query)).scalars().all())

    async def get_item(self, item_id: int) -> CatalogItem:
        async with self.db.session() as session:
            item = await session.get(CatalogItem, item_id)
        if item is None or not item.is_active:
            raise NotFound("Item not found", item_id=item_id)
        return item

    # ── Admin: catalog ────────────────────────────────────────────────────────

    async def list_all(self, category: str | None = None, status: str | None = None) -> list[CatalogItem]:
        query = select(CatalogItem)
        if category:
            query = query.where(CatalogItem.category == category)
        if status == "active":
            query = query.where(CatalogItem.is_active.is_(True))
        elif status == "inactive":
            query = query.where(CatalogItem.is_active.is_(False))
        query = query.order_by(CatalogItem.created_at.desc(), CatalogItem.id.desc())
        async with self.db.session() as session:
            return list((await session.execute(query)).scalars().all())

    async def create(self, payload: CatalogItemCreate) -> CatalogItem:
        async with self.db.transaction() as session:
            item = CatalogItem(**payload.model_dump(exclude={"price"}), price=to_money(payload.price))
            session.add(item)
            await session.flush()
            await session.refresh(item)
        logger.info("Catalog item %s created: %s", item.id, item.name)
        return item

    async def update(self, item_id: int, payload: CatalogItemUpdate) -> CatalogItem:
        changes = payload.model_dump(exclude_unset=True)
        async with self.db.transaction() as session:
            item = await session.get(CatalogItem, item_id, with_for_update=True)
            if item is None:
                raise NotFound("Item not found", item_id=item_id)
            for field, value in changes.items():
                if field == "price":
                    value = to_money(value)
                setattr(item, field, value)
            await session.flush()
            await session.refresh(item)
        logger.info("Catalog item %s updated: %s", item_id, sorted(changes))
        return item

    async def delete(self, item_id: int) -> bool:
        """Hard delete when unreferenced; otherwise deactivate. Returns True if the row was removed."""
        async with self.db.transaction() as session:
            item = await session.get(CatalogItem, item_id, with_for_update=True)
            if item is None:
                raise NotFound("Item not found", item_id=item_id)
            referenced = (await session.execute(
                select(func.count()).select_from(OrderItem).where(OrderItem.market_item_id == item_id)
            )).scalar_one()
            if referenced:
                item.is_active = False
                logger.info("Catalog item %s has %d order line(s), deactivated", item_id, referenced)
                return False
            await session.delete(item)
        logger.info("Catalog item %s deleted", item_id)
        return True

    async def toggle(self, item_id: int) -> CatalogItem:
        async with self.db.transaction() as session:
            item = await session.get(CatalogItem, item_id, with_for_update=True)
            if item is None:
                raise NotFound("Item not found", item_id=item_id)
            item.is_active = not item.is_active
            await session.flush()
            await session.refresh(item)
        return item

    # ── Admin: orders ─────────────────────────────────────────────────────────

    async def list_orders(
        self, status: OrderStatus | None = None, search: str | None = None, page: int = 1, limit: int = 20
    ) -> AdminOrderPage:
        filters = []
        if status is not None:
            filters.append(Order.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(
                Account.email.ilike(pattern),
                Player.name.ilike(pattern),
                cast(Order.id, String).like(pattern),
            ))

        query = (
            order_summary_query()
            .add_columns(Account.email)
            .outerjoin(Account, Account.id == Order.account_id)
            .where(*filters)
        )
        count_query = (
            select(func.count(Order.id))
            .outerjoin(Player, Player.id == Order.player_id)
            .outerjoin(Account, Account.id == Order.account_id)
            .where(*filters)
        )
        async with self.db.session() as session:
            total = (await session.execute(count_query)).scalar_one()
            rows = (await session.execute(
                query.order_by(Order.created_at.desc(), Order.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )).all()
            stats = await self._order_stats(session)

        return AdminOrderPage(
            orders=[
                order_out(order, player_name, total_items, model=AdminOrderOut, account_email=email)
                for order, player_name, total_items, email in rows
            ],
            pagination=Pagination(
                page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if total else 0,
            ),
            stats=stats,
        )

    async def stats(self) -> dict:
        async with self.db.session() as session:
            summary = await self._order_stats(session)

            top_rows = (await session.execute(
                select(
                    OrderItem.market_item_id,
                    OrderItem.item_name,
                    func.sum(OrderItem.quantity).label("units"),
                    func.sum(OrderItem.price * OrderItem.quantity).label("revenue"),
                )
                .join(Order, Order.id == OrderItem.order_id)
                .where(Order.status.in_(PAID_STATUSES))
                .group_by(OrderItem.market_item_id, OrderItem.item_name)
                .order_by(func.sum(OrderItem.quantity).desc())
                .limit(10)
            )).all()

            recent_rows = (await session.execute(
                order_summary_query()
                .add_columns(Account.email)
                .outerjoin(Account, Account.id == Order.account_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(10)
            )).all()

            active_items = (await session.execute(
                select(func.count()).select_from(CatalogItem).where(CatalogItem.is_active.is_(True))
            )).scalar_one()

        return {
            "sales": {
                "total_orders": summary.total_orders,
                "paid_orders": summary.approved_count + summary.delivered_count,
                "total_revenue": format_money(summary.total_revenue),
                "active_items": active_items,
            },
            "by_status": {
                status.value: getattr(summary, f"{status.value}_count") for status in OrderStatus
            },
            "top_items": [
                {
                    "market_item_id": row.market_item_id,
                    "item_name": row.item_name,
                    "units_sold": int(row.units or 0),
                    "revenue": format_money(row.revenue or 0),
                }
                for row in top_rows
            ],
            "recent_orders": [
                order_out(order, player_name, total_items, model=AdminOrderOut, account_email=email)
                for order, player_name, total_items, email in recent_rows
            ],
        }

    async def _order_stats(self, session) -> OrderStats:
        rows = (await session.execute(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .group_by(Order.status)
        )).all()
        stats = OrderStats()
        revenue = to_money(0)
        for status, count, amount in rows:
            status = OrderStatus(status)
            setattr(stats, f"{status.value}_count", count)
            stats.total_orders += count
            if status in PAID_STATUSES:
                revenue += to_money(amount)
        stats.total_revenue = revenue
        return stats
