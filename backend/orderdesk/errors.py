# Overview: Service error hierarchy; routes map these to JSON error bodies.

from __future__ import annotations


class OrderDeskError(Exception):
    """
    Base for business-rule failures raised by the service layer.

    Carries a stable machine `code`, a user-facing message and structured
    `details`. `http_status` is what the API answers with.
    """
    code = "error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFound(OrderDeskError):
    code = "not_found"
    http_status = 404


class InvalidTransition(OrderDeskError):
    code = "invalid_transition"
    http_status = 409


# =============================================================================
# CHECKOUT
# =============================================================================

class CheckoutError(OrderDeskError):
    code = "checkout_error"


class InvalidCart(CheckoutError):
    code = "invalid_cart"


class StoreClosed(CheckoutError):
    code = "store_closed"


class DuplicateOrder(CheckoutError):
    code = "duplicate_order"
    http_status = 409


class RateLimited(CheckoutError):
    code = "rate_limited"
    http_status = 429


class InsufficientStock(CheckoutError):
    """Raised by the inventory ledger; `details` names the offending product."""
    code = "insufficient_stock"
    http_status = 409

    def __init__(self, message: str, *, product_id: int, reason: str, requested: int = 0, available: int = 0):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "reason": reason,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.reason = reason


class InvalidDiscount(CheckoutError):
    code = "invalid_discount"


class GatewayChargeFailed(CheckoutError):
    code = "gateway_charge_failed"
    http_status = 502
