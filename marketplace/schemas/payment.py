"""
Marketplace — Payment gateway value objects and inbound payment payloads
"""
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field

# Order ids are 32-bit serial keys; anything larger cannot be one of ours.
MAX_ORDER_ID = 2**31 - 1


class GatewayPaymentStatus(str, Enum):
    """Payment states reported by MercadoPago."""
    APPROVED = "approved"
    AUTHORIZED = "authorized"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    IN_MEDIATION = "in_mediation"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "GatewayPaymentStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class PaymentSession(BaseModel):
    session_id: str
    redirect_url: str
    sandbox_redirect_url: str | None = None


class PaymentDetail(BaseModel):
    payment_id: str
    status: GatewayPaymentStatus
    status_detail: str | None = None
    amount: Decimal | None = None
    external_reference: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    def order_reference(self) -> int | None:
        """Order id carried in external_reference, or None when absent or foreign."""
        reference = (self.external_reference or "").strip()
        if not (reference.isascii() and reference.isdigit()):
            return None
        order_id = int(reference)
        if not 0 < order_id <= MAX_ORDER_ID:
            return None
        return order_id


class Identification(BaseModel):
    type: str = Field(..., min_length=1, max_length=16)
    number: str = Field(..., min_length=1, max_length=32)


class CardPayer(BaseModel):
    email: EmailStr
    identification: Identification | None = None


class CardCharge(BaseModel):
    """Tokenized card data produced by the gateway's card form."""
    token: str = Field(..., min_length=1)
    payment_method_id: str = Field(..., min_length=1, max_length=32)
    issuer_id: int | None = None
    installments: int = Field(1, ge=1, le=1)
    payer: CardPayer


class WebhookData(BaseModel):
    id: str | int | None = None


class WebhookEnvelope(BaseModel):
    """Only type and data.id are read; every other field is untrusted and ignored."""
    type: str | None = None
    data: WebhookData | None = None
