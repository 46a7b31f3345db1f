"""Checkout error taxonomy.

Every error carries the HTTP status it maps to, a short ``error`` string and a
human readable ``details`` message. The exception handler in ``app.main``
renders them as ``{"error": ..., "details": ...}``.
"""

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    status_code = 400
    error = "Checkout request rejected"

    def __init__(self, details: str = "", extra: Optional[Dict[str, Any]] = None):
        super().__init__(details or self.error)
        self.details = details or self.error
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error, "details": self.details}
        body.update(self.extra)
        return body


# Validation errors: always rejected, never silently repaired

class InvalidItems(CheckoutError):
    error = "Order items are required"


class InvalidQuantity(CheckoutError):
    error = "Invalid item quantity"


class InvalidPrice(CheckoutError):
    error = "Invalid item price"


class InvalidProduct(CheckoutError):
    error = "Invalid product"


class MissingDeliveryZone(CheckoutError):
    error = "Please select a delivery zone"


class InvalidCoupon(CheckoutError):
    error = "Invalid coupon"


class InvalidShippingAddress(CheckoutError):
    error = "Complete delivery address is required for delivery orders"


class InvalidPaymentAmount(CheckoutError):
    error = "Invalid payment amount"


class PaymentAmountMismatch(CheckoutError):
    error = "Payment amount mismatch"


class PaymentVerificationFailed(CheckoutError):
    error = "Payment verification failed"


class TotalMismatch(CheckoutError):
    error = "Order total mismatch"


class InvalidFailedOrder(CheckoutError):
    error = "Invalid failed order report"


class InvalidStatusTransition(CheckoutError):
    error = "Invalid status transition"


class NotFound(CheckoutError):
    status_code = 404
    error = "Not found"


class Conflict(CheckoutError):
    status_code = 409
    error = "Transaction already recorded"


class CouponExists(Conflict):
    error = "Coupon code already exists"


class RateLimited(CheckoutError):
    status_code = 429
    error = "Too many failed order reports"


class UpstreamUnavailable(CheckoutError):
    """Catalog or customer lookups failed after retries."""

    status_code = 500
    error = "Upstream service unavailable"

    def to_dict(self) -> Dict[str, Any]:
        # Detail stays in the server log
        return {"error": self.error, "details": "Please try again later"}


class OrderPersistenceFailed(CheckoutError):
    status_code = 500
    error = "Failed to create order"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "details": "Please try again later"}
