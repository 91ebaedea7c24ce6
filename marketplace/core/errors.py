"""
Marketplace — Error taxonomy

Every error a caller may see is a MarketplaceError subclass carrying its HTTP
status and optional context fields. The handlers in main.py render them as
{"error": message, **context}.
"""
from typing import Any


class MarketplaceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.context}


class Unauthenticated(MarketplaceError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(MarketplaceError):
    status_code = 403
    default_message = "Access denied"


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class Validation(MarketplaceError):
    status_code = 400
    default_message = "Invalid request"


class InvalidSelection(Validation):
    default_message = "Weapon selection is required for this item"


class EmptyCart(Validation):
    default_message = "Cart is empty"


class OutOfStock(Validation):
    default_message = "Insufficient stock"


class InsufficientBalance(Validation):
    default_message = "Insufficient boss points"


class IllegalTransition(MarketplaceError):
    status_code = 409
    default_message = "Illegal order status transition"


class GatewayRejected(MarketplaceError):
    status_code = 400
    default_message = "Payment failed, try again"


class GatewayUnavailable(MarketplaceError):
    status_code = 502
    default_message = "Payment provider unavailable, try again later"


class Internal(MarketplaceError):
    status_code = 500
