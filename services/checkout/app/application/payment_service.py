"""Total estimates and payment confirmation.

The card itself is captured by the hosted payment page; this service only
recomputes what the charge should have been and records the gateway's
transaction reference.
"""

import math
from typing import Any, Dict, Optional

from app.domain.delivery import DeliveryType
from app.domain.errors import InvalidPaymentAmount, PaymentAmountMismatch, PaymentVerificationFailed
from app.domain.money import as_number, round2, to_decimal
from shared.core import get_logger
from .pricing import PricingPipeline, Quote, QuoteRequest
from .schemas import CalculateTotalRequest, PaymentProcessRequest

logger = get_logger(__name__)

GATEWAY_TRANSACTION_KEYS = ("TransactionId", "RefNo", "transactionId")
KNOWN_GATEWAYS = {"tranzila"}


def estimate_delivery_type(request: CalculateTotalRequest) -> DeliveryType:
    if request.delivery_type is not None:
        return request.delivery_type
    return DeliveryType.DELIVERY if request.delivery_zone else DeliveryType.PICKUP


class PaymentService:
    def __init__(self, pipeline: PricingPipeline, currency: str = "ILS", tolerance: float = 0.01):
        self.pipeline = pipeline
        self.currency = currency
        self.tolerance = to_decimal(tolerance)

    async def calculate_total(self, request: CalculateTotalRequest, user_id: str) -> Quote:
        """Price a cart exactly as order creation would, without persisting anything."""
        return await self.pipeline.quote(
            QuoteRequest(
                user_id=user_id,
                items=[item.to_cart_item() for item in request.items],
                subtotal=request.subtotal,
                coupon_code=request.coupon_code,
                delivery_type=estimate_delivery_type(request),
                delivery_zone=request.delivery_zone,
                total_weight=request.total_weight,
                client_delivery_cost=request.delivery_cost,
            ),
            require_items=False,
        )

    async def process(self, request: PaymentProcessRequest, user_id: str) -> Dict[str, Any]:
        amount = as_number(request.amount)
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise InvalidPaymentAmount("Payment amount must be a positive number")

        if request.items or request.subtotal is not None:
            quote = await self.calculate_total(request, user_id)
            difference = abs(to_decimal(amount) - quote.total)
            if difference > self.tolerance:
                logger.warning(
                    f"Payment amount mismatch: client sent {amount}, expected {quote.total}",
                    extra={'extra_fields': {
                        'event': 'payment_amount_mismatch',
                        'user_id': user_id,
                        'client_amount': amount,
                        'expected_total': float(quote.total),
                        'difference': float(difference),
                    }}
                )
                raise PaymentAmountMismatch(
                    f"Payment amount ({amount} {self.currency}) does not match calculated total "
                    f"({quote.total} {self.currency}). Please refresh and try again.",
                    extra={"expectedTotal": float(quote.total)},
                )
        else:
            logger.info("No items or subtotal supplied, skipping amount validation",
                        extra={'extra_fields': {'user_id': user_id}})

        transaction_id = self._transaction_id(request)
        if not transaction_id:
            logger.error("Payment rejected: no transaction id", extra={'extra_fields': {'user_id': user_id}})
            raise PaymentVerificationFailed(
                "Transaction ID is required. Payment cannot be processed without a valid "
                "transaction ID from the payment gateway."
            )

        method = (request.payment_method or "").lower()
        result = {
            "success": True,
            "transactionId": transaction_id,
            "amount": float(round2(amount)),
            "currency": request.currency or self.currency,
            "status": "completed",
            "message": "Payment verified successfully",
            "paymentGateway": method if method in KNOWN_GATEWAYS else "unknown",
        }
        logger.info(
            f"Payment {transaction_id} verified",
            extra={'extra_fields': {'event': 'payment_verified', 'user_id': user_id,
                                    'amount': result["amount"], 'currency': result["currency"]}}
        )
        return result

    @staticmethod
    def _transaction_id(request: PaymentProcessRequest) -> Optional[str]:
        if request.transaction_id and str(request.transaction_id).strip():
            return str(request.transaction_id).strip()
        gateway = request.gateway_response or {}
        for key in GATEWAY_TRANSACTION_KEYS:
            value = gateway.get(key)
            if value not in (None, ""):
                return str(value)
        return None
