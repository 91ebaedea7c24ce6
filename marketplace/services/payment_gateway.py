"""
Marketplace — MercadoPago adapter

Translation layer only: no business state lives here. Every call carries a
short timeout; transport failures and provider 5xx surface as
GatewayUnavailable, provider-side validation errors (bad token, rejected
parameters) as GatewayRejected with the provider's own message.
"""
import logging
from decimal import Decimal
from typing import Any

import httpx

from marketplace.core.config import Settings
from marketplace.core.errors import GatewayRejected, GatewayUnavailable
from marketplace.core.money import to_money
from marketplace.schemas.payment import CardCharge, GatewayPaymentStatus, PaymentDetail, PaymentSession

logger = logging.getLogger(__name__)


class MercadoPagoGateway:
    provider = "mercadopago"

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Settings) -> "MercadoPagoGateway":
        client = httpx.AsyncClient(
            base_url=settings.MP_API_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            headers={"Authorization": f"Bearer {settings.MP_ACCESS_TOKEN}"},
        )
        return cls(client, settings)

    async def close(self) -> None:
        await self.client.aclose()

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.warning("MercadoPago %s %s timed out", method, path)
            raise GatewayUnavailable("Payment provider did not respond in time. Please retry.")
        except httpx.RequestError as exc:
            logger.warning("MercadoPago %s %s unreachable: %s", method, path, exc)
            raise GatewayUnavailable()

        if response.status_code >= 500:
            logger.error("MercadoPago %s %s returned %d", method, path, response.status_code)
            raise GatewayUnavailable()

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = _provider_message(body)
            logger.warning(
                "MercadoPago %s %s rejected (%d): %s", method, path, response.status_code, message
            )
            raise GatewayRejected(message, status_detail=message)

        if not isinstance(body, dict):
            logger.error("MercadoPago %s %s returned a non-JSON body", method, path)
            raise GatewayUnavailable()
        return body

    # ── Operations ────────────────────────────────────────────────────────────

    async def create_session(
        self, order_id: int, total: Decimal, payer_email: str, description: str
    ) -> PaymentSession:
        """Create a hosted checkout preference for one order."""
        frontend = self.settings.FRONTEND_URL.rstrip("/")
        backend = self.settings.BACKEND_URL.rstrip("/")
        body: dict[str, Any] = {
            "items": [
                {
                    "id": str(order_id),
                    "title": description,
                    "description": description,
                    "quantity": 1,
                    "currency_id": self.settings.MP_CURRENCY_ID,
                    # The provider only accepts JSON numbers; total is already cent-exact.
                    "unit_price": float(to_money(total)),
                }
            ],
            "payer": {"email": payer_email},
            "external_reference": str(order_id),
            "notification_url": f"{backend}/marketplace/mp/webhook",
            "metadata": {"order_id": order_id},
            "payment_methods": {"installments": 1},
            "statement_descriptor": self.settings.MP_STATEMENT_DESCRIPTOR,
            "back_urls": {
                "success": f"{frontend}/marketplace?payment=success",
                "failure": f"{frontend}/marketplace?payment=failure",
                "pending": f"{frontend}/marketplace?payment=pending",
            },
        }
        # auto_return is refused by the provider for localhost back URLs
        if "localhost" not in frontend:
            body["auto_return"] = "approved"

        data = await self._request("POST", "/checkout/preferences", json=body)
        try:
            session = PaymentSession(
                session_id=str(data["id"]),
                redirect_url=data["init_point"],
                sandbox_redirect_url=data.get("sandbox_init_point"),
            )
        except KeyError as exc:
            logger.error("MercadoPago preference response missing %s", exc)
            raise GatewayUnavailable()
        logger.info("Created MercadoPago preference %s for order %s", session.session_id, order_id)
        return session

    async def get_payment_status(self, payment_id: str) -> PaymentDetail:
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        return _payment_detail(data)

    async def charge_card(
        self, charge: CardCharge, amount: Decimal, order_reference: int, description: str
    ) -> PaymentDetail:
        """Charge a tokenized card synchronously; the returned status is authoritative."""
        body: dict[str, Any] = {
            "token": charge.token,
            "payment_method_id": charge.payment_method_id,
            "transaction_amount": float(to_money(amount)),
            "installments": charge.installments,
            "description": description,
            "external_reference": str(order_reference),
            "metadata": {"order_id": order_reference},
            "payer": charge.payer.model_dump(mode="json", exclude_none=True),
        }
        if charge.issuer_id is not None:
            body["issuer_id"] = charge.issuer_id
        data = await self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers={"X-Idempotency-Key": f"order-{order_reference}"},
        )
        detail = _payment_detail(data)
        logger.info(
            "Card payment %s for order %s: %s (%s)",
            detail.payment_id, order_reference, detail.status.value, detail.status_detail,
        )
        return detail

    async def search_payments(self, external_reference: int) -> list[PaymentDetail]:
        data = await self._request(
            "GET",
            "/v1/payments/search",
            params={"external_reference": str(external_reference), "sort": "date_created", "criteria": "desc"},
        )
        return [_payment_detail(result) for result in data.get("results") or []]


def _payment_detail(data: dict[str, Any]) -> PaymentDetail:
    if "id" not in data:
        logger.error("MercadoPago payment response without id")
        raise GatewayUnavailable()
    amount = data.get("transaction_amount")
    return PaymentDetail(
        payment_id=str(data["id"]),
        status=GatewayPaymentStatus.parse(data.get("status")),
        status_detail=data.get("status_detail"),
        amount=to_money(amount) if amount is not None else None,
        external_reference=data.get("external_reference"),
        raw=data,
    )


def _provider_message(body: Any) -> str:
    if isinstance(body, dict):
        for cause in body.get("cause") or []:
            if isinstance(cause, dict) and cause.get("description"):
                return str(cause["description"])
        if body.get("message"):
            return str(body["message"])
    return "Payment failed, try again"
