"""
Marketplace — Order ledger & checkout

checkout() builds a pending order from the cart snapshot and opens a hosted
payment session inside one transaction; if the gateway call fails the order
is rolled back and the cart is left as it was.

process_card_payment() commits the pending order first and charges the card
afterwards, so a charge the provider captured is always matched to an order
even when the charge call itself times out.
"""
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import EmptyCart, GatewayRejected, GatewayUnavailable, NotFound, Validation
from marketplace.core.money import line_total, sum_money, to_money
from marketplace.db.database import Database
from marketplace.models import CatalogItem, Order, OrderItem, OrderStatus, PaymentMethod, Player
from marketplace.schemas.order import (
    CardPaymentRequest, CardPaymentResponse, CheckoutResponse, OrderDetailOut, OrderItemOut, OrderOut,
    PaymentSummary,
)
from marketplace.schemas.payment import GatewayPaymentStatus
from marketplace.services.accounts import get_account, owned_character
from marketplace.services.cart_service import (
    active_lines_query, available_stock, clear_cart, out_of_stock, validate_weapon_choice,
)
from marketplace.services.payment_gateway import MercadoPagoGateway
from marketplace.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(self, db: Database, gateway: MercadoPagoGateway, reconciliation: ReconciliationService):
        self.db = db
        self.gateway = gateway
        self.reconciliation = reconciliation

    async def checkout(self, account_id: int, player_id: int) -> CheckoutResponse:
        async with self.db.transaction() as session:
            account = await get_account(session, account_id)
            await owned_character(session, account_id, player_id)

            order = await self._create_order(session, account_id, player_id, PaymentMethod.GATEWAY_REDIRECT)
            payment_session = await self.gateway.create_session(
                order.id, order.total_amount, account.email, f"Marketplace order #{order.id}"
            )
            order.preference_id = payment_session.session_id
            await clear_cart(session, account_id)

        logger.info(
            "Checkout: order %s for account %s, total %s, preference %s",
            order.id, account_id, order.total_amount, order.preference_id,
        )
        return CheckoutResponse(
            order_id=order.id,
            total=order.total_amount,
            preference_id=payment_session.session_id,
            init_point=payment_session.redirect_url,
            sandbox_init_point=payment_session.sandbox_redirect_url,
        )

    async def process_card_payment(self, account_id: int, payload: CardPaymentRequest) -> CardPaymentResponse:
        """
        Card-form checkout: charge the tokenized card for the server-side
        total, then hand the synchronous result to reconciliation exactly
        as a webhook would. The cart is only emptied once the payment is
        approved, so a declined card leaves it ready for another attempt.

        A charge the provider refuses outright discards the order. A charge
        whose outcome is unknown (timeout, provider 5xx) leaves the order
        pending for the webhook or the expiry sweep to settle.
        """
        async with self.db.transaction() as session:
            await get_account(session, account_id)
            await owned_character(session, account_id, payload.player_id)

            order = await self._create_order(session, account_id, payload.player_id, PaymentMethod.GATEWAY_CARD)
            if payload.transaction_amount is not None and to_money(payload.transaction_amount) != order.total_amount:
                raise Validation(
                    "Payment amount does not match the cart total",
                    expected=str(order.total_amount),
                    received=str(to_money(payload.transaction_amount)),
                )

        description = payload.description or f"Marketplace order #{order.id}"
        try:
            detail = await self.gateway.charge_card(payload, order.total_amount, order.id, description)
        except GatewayRejected:
            await self._discard_order(order.id)
            raise
        except GatewayUnavailable as exc:
            logger.warning(
                "Card charge for order %s ended without an answer, order left pending for reconciliation",
                order.id,
            )
            raise GatewayUnavailable(exc.message, order_id=order.id) from exc

        order = await self.reconciliation.apply_payment(detail)

        approved = order.status in (OrderStatus.APPROVED, OrderStatus.DELIVERED)
        if approved:
            message = "Payment approved"
        elif detail.status in (GatewayPaymentStatus.PENDING, GatewayPaymentStatus.IN_PROCESS):
            message = "Payment is being processed"
        else:
            message = detail.status_detail or "Payment failed, try again"
        return CardPaymentResponse(
            success=approved,
            order_id=order.id,
            order_status=order.status,
            payment=PaymentSummary(id=detail.payment_id, status=detail.status, status_detail=detail.status_detail),
            message=message,
        )

    async def list_orders(self, account_id: int) -> list[OrderOut]:
        async with self.db.session() as session:
            rows = (await session.execute(
                order_summary_query()
                .where(Order.account_id == account_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
            )).all()
        return [order_out(order, player_name, total_items) for order, player_name, total_items in rows]

    async def get_order(self, account_id: int, order_id: int) -> OrderDetailOut:
        async with self.db.session() as session:
            row = (await session.execute(
                order_summary_query().where(Order.id == order_id, Order.account_id == account_id)
            )).first()
            if row is None:
                raise NotFound("Order not found", order_id=order_id)
            items = (await session.execute(
                select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
            )).scalars().all()

        order, player_name, total_items = row
        return OrderDetailOut(
            **order_out(order, player_name, total_items).model_dump(),
            items=[OrderItemOut.model_validate(item) for item in items],
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _create_order(
        self, session: AsyncSession, account_id: int, player_id: int, method: PaymentMethod
    ) -> Order:
        # Lock the catalog rows so concurrent checkouts of the same item re-validate in turn.
        rows = (await session.execute(
            active_lines_query(account_id).with_for_update(of=CatalogItem)
        )).all()
        if not rows:
            raise EmptyCart()

        for line, item in rows:
            validate_weapon_choice(item, line.selected_weapon_id)
            available = await available_stock(session, item)
            if available is not None and available < line.quantity:
                raise out_of_stock(item, available)

        total = sum_money(line_total(item.price, line.quantity) for line, item in rows)
        order = Order(
            account_id=account_id,
            player_id=player_id,
            total_amount=total,
            status=OrderStatus.PENDING,
            payment_method=method,
        )
        session.add(order)
        await session.flush()

        for line, item in rows:
            session.add(OrderItem(
                order_id=order.id,
                market_item_id=item.id,
                item_name=item.name,
                quantity=line.quantity,
                price=to_money(item.price),
                selected_weapon_id=line.selected_weapon_id,
                items_json=item.frozen_bundle(line.selected_weapon_id),
            ))
        await session.flush()
        return order

    async def _discard_order(self, order_id: int) -> None:
        """Drop a card order the provider refused before any payment existed."""
        async with self.db.transaction() as session:
            order = await session.get(Order, order_id, with_for_update=True)
            if order is None or order.status != OrderStatus.PENDING or order.payment_id is not None:
                return
            await session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            await session.delete(order)
        logger.info("Card order %s discarded after the provider refused the charge", order_id)


def order_summary_query():
    """Orders with their character name and total purchased units."""
    total_items = (
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .where(OrderItem.order_id == Order.id)
        .correlate(Order)
        .scalar_subquery()
    )
    return (
        select(Order, Player.name, total_items)
        .outerjoin(Player, Player.id == Order.player_id)
    )


def order_out(order: Order, player_name: str | None, total_items: int, model=OrderOut, **extra) -> OrderOut:
    return model(
        id=order.id,
        account_id=order.account_id,
        player_id=order.player_id,
        player_name=player_name,
        total_amount=order.total_amount,
        status=order.status,
        payment_method=order.payment_method,
        preference_id=order.preference_id,
        payment_id=order.payment_id,
        created_at=order.created_at,
        delivered_at=order.delivered_at,
        total_items=int(total_items or 0),
        **extra,
    )
