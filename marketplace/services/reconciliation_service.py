"""
Marketplace — Payment reconciliation

Every payment outcome, whether it arrives through the webhook, the card
form or the pending-order sweep, goes through apply_payment(). Ground truth
always comes from the gateway keyed by payment id; notification bodies are
never trusted for status or amount.

Order of operations for one payment:
  1. audit row in payment_logs, committed on its own
  2. state transition under a row lock (compare-and-set from 'pending')
  3. after commit, best-effort delivery; failures are left to the
     redelivery sweep and never unwind the payment
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import Settings, get_settings
from marketplace.core.errors import GatewayUnavailable, IllegalTransition, NotFound, Validation
from marketplace.db.database import Database
from marketplace.models import (
    BossPointsPurchase, CatalogItem, DeliveryRecord, DeliverySource, Order, OrderItem, OrderStatus,
    PaymentLog, UNLIMITED_STOCK,
)
from marketplace.models.order import ADMIN_TRANSITIONS, check_transition
from marketplace.schemas.order import SweepResult, UndeliveredEntry
from marketplace.schemas.payment import GatewayPaymentStatus, PaymentDetail
from marketplace.services.cart_service import clear_cart
from marketplace.services.delivery_service import DeliveryService
from marketplace.services.payment_gateway import MercadoPagoGateway

logger = logging.getLogger(__name__)

CANCEL_STATUSES = frozenset({GatewayPaymentStatus.REJECTED, GatewayPaymentStatus.CANCELLED})
IN_FLIGHT_STATUSES = frozenset({
    GatewayPaymentStatus.PENDING,
    GatewayPaymentStatus.IN_PROCESS,
    GatewayPaymentStatus.AUTHORIZED,
    GatewayPaymentStatus.IN_MEDIATION,
})


class ReconciliationService:
    def __init__(
        self,
        db: Database,
        gateway: MercadoPagoGateway,
        delivery: DeliveryService,
        settings: Settings | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.delivery = delivery
        self.settings = settings or get_settings()

    async def on_payment_event(self, payment_id: str) -> Order:
        """Webhook entry point: re-fetch the payment by id, then apply it."""
        detail = await self.gateway.get_payment_status(payment_id)
        return await self.apply_payment(detail)

    async def apply_payment(self, detail: PaymentDetail) -> Order:
        order_id = detail.order_reference()
        if order_id is None:
            logger.warning(
                "Payment %s carries no usable external_reference (%r), ignoring",
                detail.payment_id, detail.external_reference,
            )
            raise Validation("Payment has no order reference", payment_id=detail.payment_id)

        async with self.db.transaction() as session:
            order = await session.get(Order, order_id)
            if order is None:
                logger.warning("Payment %s references unknown order %s", detail.payment_id, order_id)
                raise Validation("Order not found for payment", order_id=order_id, payment_id=detail.payment_id)
            session.add(PaymentLog(
                order_id=order_id,
                provider=self.gateway.provider,
                payment_id=detail.payment_id,
                status=detail.status.value,
                status_detail=detail.status_detail,
                amount=detail.amount,
                raw_data=detail.raw,
            ))

        logger.info(
            "Payment %s for order %s reported %s (%s)",
            detail.payment_id, order_id, detail.status.value, detail.status_detail,
        )

        try:
            if detail.status == GatewayPaymentStatus.APPROVED:
                order = await self._approve(order_id, detail)
                if order.status == OrderStatus.APPROVED:
                    await self._deliver_order(order)
                    order = await self._reload(order_id)
            elif detail.status in CANCEL_STATUSES:
                order = await self._cancel(order_id, detail)
            elif detail.status in IN_FLIGHT_STATUSES:
                order = await self._keep_pending(order_id, detail)
            else:
                logger.warning(
                    "Payment %s for order %s in status %s needs manual review, order left as is",
                    detail.payment_id, order_id, detail.status.value,
                )
                order = await self._reload(order_id)
        except IllegalTransition as exc:
            logger.error(
                "Payment %s (%s) cannot be applied to order %s: %s",
                detail.payment_id, detail.status.value, order_id, exc.message,
            )
            order = await self._reload(order_id)
        return order

    # ── Transitions ───────────────────────────────────────────────────────────

    async def _approve(self, order_id: int, detail: PaymentDetail) -> Order:
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order.status in (OrderStatus.APPROVED, OrderStatus.DELIVERED):
                logger.info("Order %s already %s, replay of payment %s skipped",
                            order_id, order.status.value, detail.payment_id)
                return order
            check_transition(order.status, OrderStatus.APPROVED)

            if detail.amount is not None and detail.amount < order.total_amount:
                logger.error(
                    "Payment %s approved %s but order %s totals %s, order left pending",
                    detail.payment_id, detail.amount, order_id, order.total_amount,
                )
                return order

            result = await session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
                .values(status=OrderStatus.APPROVED, payment_id=detail.payment_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning("Order %s changed state while approving payment %s", order_id, detail.payment_id)
                await session.refresh(order)
                return order

            items = (await session.execute(
                select(OrderItem).where(OrderItem.order_id == order_id)
            )).scalars().all()
            for item in items:
                await self._decrement_stock(session, item.market_item_id, item.quantity, order_id)

            await clear_cart(session, order.account_id)
            await session.refresh(order)

        logger.info("Order %s approved by payment %s", order_id, detail.payment_id)
        return order

    async def _decrement_stock(self, session: AsyncSession, market_item_id: int, quantity: int, order_id: int) -> None:
        result = await session.execute(
            update(CatalogItem)
            .where(
                CatalogItem.id == market_item_id,
                CatalogItem.stock != UNLIMITED_STOCK,
                CatalogItem.stock >= quantity,
            )
            .values(stock=CatalogItem.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return
        item = await session.get(CatalogItem, market_item_id, with_for_update=True)
        if item is None or item.unlimited:
            return
        # Paid for more units than remain; the money is real, so clamp and flag it.
        logger.error(
            "Order %s oversold item %s: %d paid, %d in stock; stock set to 0",
            order_id, market_item_id, quantity, item.stock,
        )
        item.stock = 0

    async def _cancel(self, order_id: int, detail: PaymentDetail) -> Order:
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order.status == OrderStatus.CANCELLED:
                return order
            if order.status != OrderStatus.PENDING:
                # A declined earlier attempt must never undo an approved one.
                logger.info(
                    "Ignoring %s payment %s for order %s already %s",
                    detail.status.value, detail.payment_id, order_id, order.status.value,
                )
                return order
            check_transition(order.status, OrderStatus.CANCELLED)
            order.status = OrderStatus.CANCELLED
            order.payment_id = detail.payment_id
        logger.info("Order %s cancelled (payment %s %s)", order_id, detail.payment_id, detail.status.value)
        return order

    async def _keep_pending(self, order_id: int, detail: PaymentDetail) -> Order:
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order.status == OrderStatus.PENDING:
                check_transition(order.status, OrderStatus.PENDING)
                order.payment_id = detail.payment_id
            return order

    async def _reload(self, order_id: int) -> Order:
        async with self.db.session() as session:
            return await session.get(Order, order_id)

    async def _deliver_order(self, order: Order) -> bool:
        """Best-effort delivery after the approval is committed."""
        try:
            async with self.db.session() as session:
                items = (await session.execute(
                    select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)
                )).scalars().all()
            bundle = [unit for item in items for unit in item.delivery_items()]
            await self.delivery.deliver(order.player_id, bundle, order.id, DeliverySource.ORDER)
        except Exception:
            logger.exception("Delivery failed for approved order %s, left for redelivery", order.id)
            return False
        return True

    async def _deliver_purchase(self, purchase: BossPointsPurchase) -> bool:
        try:
            await self.delivery.deliver(
                purchase.player_id, purchase.items_json, purchase.id, DeliverySource.BOSS_POINTS
            )
        except Exception:
            logger.exception("Delivery failed for boss points purchase %s, left for redelivery", purchase.id)
            return False
        return True

    # ── Administration ────────────────────────────────────────────────────────

    async def set_order_status(self, order_id: int, status: OrderStatus) -> Order:
        """Manual override from the admin panel, limited to cancel and refund."""
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order is None:
                raise NotFound("Order not found", order_id=order_id)
            previous = order.status
            check_transition(previous, status, ADMIN_TRANSITIONS)
            order.status = status

            if status == OrderStatus.REFUNDED:
                # Approved but undelivered: the units never left, give them back.
                items = (await session.execute(
                    select(OrderItem).where(OrderItem.order_id == order_id)
                )).scalars().all()
                for item in items:
                    await session.execute(
                        update(CatalogItem)
                        .where(CatalogItem.id == item.market_item_id, CatalogItem.stock != UNLIMITED_STOCK)
                        .values(stock=CatalogItem.stock + item.quantity)
                        .execution_options(synchronize_session=False)
                    )
            await session.flush()
            await session.refresh(order)

        logger.info("Admin moved order %s from %s to %s", order_id, previous.value, status.value)
        return order

    async def expire_stale_orders(self, older_than_minutes: int, limit: int | None = None) -> SweepResult:
        """
        Settle 'pending' orders created before the cutoff. Each order is
        looked up at the gateway first: an approved payment is applied, a
        payment still in flight keeps the order open, anything else cancels it.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        async with self.db.session() as session:
            order_ids = (await session.execute(
                select(Order.id)
                .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
                .order_by(Order.created_at)
                .limit(limit or self.settings.RECONCILE_BATCH_SIZE)
            )).scalars().all()

        result = SweepResult()
        for order_id in order_ids:
            result.examined += 1
            try:
                payments = await self.gateway.search_payments(order_id)
            except GatewayUnavailable:
                logger.warning("Gateway unavailable while sweeping order %s", order_id)
                result.failed += 1
                continue

            approved = next((p for p in payments if p.status == GatewayPaymentStatus.APPROVED), None)
            if approved is not None:
                order = await self.apply_payment(approved)
                if order.status in (OrderStatus.APPROVED, OrderStatus.DELIVERED):
                    result.approved += 1
                if order.status == OrderStatus.DELIVERED:
                    result.delivered += 1
                continue
            if any(p.status in IN_FLIGHT_STATUSES for p in payments):
                result.still_pending += 1
                continue

            if await self._expire(order_id):
                result.cancelled += 1

        logger.info("Pending-order sweep (cutoff %s): %s", cutoff.isoformat(), result.model_dump(exclude={"success"}))
        return result

    async def _expire(self, order_id: int) -> bool:
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order.status != OrderStatus.PENDING:
                return False
            check_transition(order.status, OrderStatus.CANCELLED)
            order.status = OrderStatus.CANCELLED
        logger.info("Expired pending order %s", order_id)
        return True

    async def undelivered_report(self) -> list[UndeliveredEntry]:
        """Approved orders and boss-points purchases with no delivery record."""
        async with self.db.session() as session:
            orders = (await session.execute(
                select(Order)
                .outerjoin(DeliveryRecord, and_(
                    DeliveryRecord.source == DeliverySource.ORDER, DeliveryRecord.order_id == Order.id,
                ))
                .where(Order.status == OrderStatus.APPROVED, DeliveryRecord.id.is_(None))
                .order_by(Order.created_at)
            )).scalars().all()
            purchases = (await session.execute(
                select(BossPointsPurchase)
                .outerjoin(DeliveryRecord, and_(
                    DeliveryRecord.source == DeliverySource.BOSS_POINTS,
                    DeliveryRecord.order_id == BossPointsPurchase.id,
                ))
                .where(BossPointsPurchase.status == OrderStatus.APPROVED, DeliveryRecord.id.is_(None))
                .order_by(BossPointsPurchase.created_at)
            )).scalars().all()

        entries = [
            UndeliveredEntry(
                source=DeliverySource.ORDER.value, reference_id=o.id, account_id=o.account_id,
                player_id=o.player_id, status=o.status, created_at=o.created_at,
            )
            for o in orders
        ]
        entries += [
            UndeliveredEntry(
                source=DeliverySource.BOSS_POINTS.value, reference_id=p.id, account_id=p.account_id,
                player_id=p.player_id, status=p.status, created_at=p.created_at,
            )
            for p in purchases
        ]
        return entries

    async def redeliver_order(self, order_id: int) -> Order:
        """Admin retry for one approved order. Errors propagate to the caller."""
        order = await self._reload(order_id)
        if order is None:
            raise NotFound("Order not found", order_id=order_id)
        if order.status == OrderStatus.DELIVERED:
            return order
        check_transition(order.status, OrderStatus.DELIVERED)

        async with self.db.session() as session:
            items = (await session.execute(
                select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
            )).scalars().all()
        bundle = [unit for item in items for unit in item.delivery_items()]
        await self.delivery.deliver(order.player_id, bundle, order.id, DeliverySource.ORDER)
        logger.info("Order %s redelivered", order_id)
        return await self._reload(order_id)

    async def redeliver_pending(self) -> SweepResult:
        async with self.db.session() as session:
            orders = (await session.execute(
                select(Order)
                .where(Order.status == OrderStatus.APPROVED)
                .order_by(Order.created_at)
                .limit(self.settings.RECONCILE_BATCH_SIZE)
            )).scalars().all()
            purchases = (await session.execute(
                select(BossPointsPurchase)
                .where(BossPointsPurchase.status == OrderStatus.APPROVED)
                .order_by(BossPointsPurchase.created_at)
                .limit(self.settings.RECONCILE_BATCH_SIZE)
            )).scalars().all()

        result = SweepResult()
        for order in orders:
            result.examined += 1
            if await self._deliver_order(order):
                result.delivered += 1
            else:
                result.failed += 1
        for purchase in purchases:
            result.examined += 1
            if await self._deliver_purchase(purchase):
                result.delivered += 1
            else:
                result.failed += 1

        if result.examined:
            logger.info("Redelivery sweep: %s", result.model_dump(exclude={"success"}))
        return result
