"""The pricing pipeline shared by the total estimate and order creation.

PriceValidator -> DiscountResolver -> DeliveryFeeCalculator -> assemble_totals
-> OrderIntegrityGuard. Both ``/payment/calculate-total`` and
``/orders/create`` call ``PricingPipeline.quote`` so identical inputs always
price identically.
"""

import asyncio
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.domain.delivery import DeliveryFeeCalculator, DeliveryType
from app.domain.errors import InvalidItems, InvalidProduct, TotalMismatch
from app.domain.models import Order
from app.domain.money import (
    ZERO, Totals, as_number, assemble_totals, discounted_subtotal,
    is_finite_non_negative, round2, to_decimal,
)
from app.domain.pricing import (
    CartItem, Discount, OrderLine, PriceMismatch, ProductSnapshot,
    parse_custom_price, parse_quantity,
)
from app.infrastructure.clients import ProductCatalog
from shared.core import get_logger
from .discounts import DiscountResolver

logger = get_logger(__name__)


@dataclass(frozen=True)
class ValidatedCart:
    lines: Tuple[OrderLine, ...]
    mismatches: Tuple[PriceMismatch, ...] = ()

    @property
    def subtotal(self) -> Decimal:
        return round2(sum((line.line_total for line in self.lines), ZERO))

    @property
    def weight(self) -> Decimal:
        return sum((line.line_weight for line in self.lines), ZERO)


class PriceValidator:
    """Resolves the charged unit price of every cart line from the catalog."""

    def __init__(self, catalog: ProductCatalog, tolerance: float = 0.01):
        self.catalog = catalog
        self.tolerance = to_decimal(tolerance)

    async def validate(self, items: Sequence[CartItem]) -> ValidatedCart:
        if not items:
            raise InvalidItems("Order items are required")

        snapshots = await self._fetch_snapshots(items)
        lines: List[OrderLine] = []
        mismatches: List[PriceMismatch] = []

        for index, item in enumerate(items):
            label = item.label(index)
            quantity = parse_quantity(item.quantity, label)
            if item.is_custom:
                lines.append(OrderLine(
                    product_id="",
                    name=item.name or f"Item {index + 1}",
                    image=item.image or "",
                    quantity=quantity,
                    unit_price=parse_custom_price(item.client_price, label),
                    weight=self._client_weight(item) or ZERO,
                    selected_size=item.selected_size,
                    selected_color=item.selected_color,
                ))
                continue

            snapshot = snapshots.get(item.product_id)
            if snapshot is None:
                raise InvalidProduct(f"Product {item.product_id} not found in catalog")
            mismatch = self._compare(item, snapshot)
            if mismatch:
                mismatches.append(mismatch)
            lines.append(OrderLine(
                product_id=item.product_id,
                name=snapshot.name or item.name or f"Item {index + 1}",
                image=snapshot.image or item.image or "",
                quantity=quantity,
                unit_price=snapshot.effective_price,
                weight=self._client_weight(item) or snapshot.weight,
                selected_size=item.selected_size,
                selected_color=item.selected_color,
            ))

        for mismatch in mismatches:
            logger.warning(
                f"Price mismatch for product {mismatch.product_id}: client sent {mismatch.client_price}, "
                f"catalog price is {mismatch.server_price}. Using catalog price.",
                extra={'extra_fields': {
                    'event': 'price_mismatch',
                    'product_id': mismatch.product_id,
                    'client_price': mismatch.client_price,
                    'server_price': float(mismatch.server_price),
                }}
            )
        return ValidatedCart(lines=tuple(lines), mismatches=tuple(mismatches))

    async def _fetch_snapshots(self, items: Sequence[CartItem]) -> Dict[str, ProductSnapshot]:
        product_ids = list(dict.fromkeys(item.product_id for item in items if item.product_id))
        results = await asyncio.gather(*(self.catalog.fetch_product(pid) for pid in product_ids))
        return {pid: snapshot for pid, snapshot in zip(product_ids, results) if snapshot is not None}

    def _compare(self, item: CartItem, snapshot: ProductSnapshot) -> Optional[PriceMismatch]:
        client_price = as_number(item.client_price)
        if client_price is None:
            return None
        if math.isfinite(client_price) and abs(to_decimal(client_price) - snapshot.effective_price) <= self.tolerance:
            return None
        return PriceMismatch(item.product_id, client_price, snapshot.effective_price)

    @staticmethod
    def _client_weight(item: CartItem) -> Optional[Decimal]:
        if is_finite_non_negative(item.client_weight) and as_number(item.client_weight) > 0:
            return to_decimal(as_number(item.client_weight))
        return None


@dataclass(frozen=True)
class TotalCheck:
    total: Decimal
    client_total: Optional[float]
    difference: Optional[Decimal]
    mismatched: bool


class OrderIntegrityGuard:
    """Compares a client-declared total with the server total.

    The server value is always the one kept. A mismatch is logged; it only
    rejects the request when ``reject_threshold`` is configured and exceeded.
    """

    def __init__(self, tolerance: float = 0.01, reject_threshold: Optional[float] = None):
        self.tolerance = to_decimal(tolerance)
        self.reject_threshold = to_decimal(reject_threshold) if reject_threshold is not None else None

    def check(self, client_total: Any, server_total: Decimal) -> TotalCheck:
        client = as_number(client_total)
        if client is None or math.isnan(client):
            return TotalCheck(server_total, None, None, False)
        if not math.isfinite(client):
            return TotalCheck(server_total, client, None, True)
        difference = abs(to_decimal(client) - server_total)
        return TotalCheck(server_total, client, difference, difference > self.tolerance)

    def reconcile(self, client_total: Any, server_total: Decimal, user_id: str = "") -> TotalCheck:
        result = self.check(client_total, server_total)
        if not result.mismatched:
            return result
        logger.warning(
            f"Order total mismatch: client sent {result.client_total}, expected {server_total}. "
            f"Using server-calculated total.",
            extra={'extra_fields': {
                'event': 'total_mismatch',
                'user_id': user_id,
                'client_total': result.client_total,
                'server_total': float(server_total),
            }}
        )
        if self.reject_threshold is not None and (result.difference is None or result.difference > self.reject_threshold):
            raise TotalMismatch(
                f"Order total ({result.client_total}) does not match calculated total ({server_total})",
                extra={"expectedTotal": float(server_total)},
            )
        return result


@dataclass(frozen=True)
class QuoteRequest:
    user_id: str
    items: Sequence[CartItem] = ()
    # Only used when no items are supplied
    subtotal: Any = None
    coupon_code: Optional[str] = None
    delivery_type: DeliveryType = DeliveryType.DELIVERY
    delivery_zone: Optional[str] = None
    total_weight: Any = None
    client_delivery_cost: Any = None
    client_total: Any = None


@dataclass(frozen=True)
class Quote:
    subtotal_before_discount: Decimal
    discount: Discount
    totals: Totals
    total_weight: Decimal
    delivery_type: DeliveryType
    delivery_zone: Optional[str]
    lines: Tuple[OrderLine, ...] = ()
    mismatches: Tuple[PriceMismatch, ...] = ()
    total_check: Optional[TotalCheck] = field(default=None, compare=False)

    @property
    def total(self) -> Decimal:
        return self.totals.total

    def as_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": float(self.totals.subtotal),
            "subtotalBeforeDiscount": float(self.subtotal_before_discount),
            "discount": self.discount.as_dict(),
            "tax": float(self.totals.tax),
            "deliveryCost": float(self.totals.delivery_cost),
            "total": float(self.totals.total),
        }

    def apply_to(self, order: Order) -> None:
        order.subtotal_before_discount = self.subtotal_before_discount
        order.discount_type = self.discount.type.value if self.discount.type else None
        order.discount_percentage = self.discount.percentage
        order.discount_amount = self.discount.amount
        order.coupon_code = self.discount.coupon_code
        order.coupon_id = self.discount.coupon_id
        order.subtotal = self.totals.subtotal
        order.delivery_cost = self.totals.delivery_cost
        order.tax = self.totals.tax
        order.total = self.totals.total
        order.total_weight = self.total_weight
        order.delivery_type = self.delivery_type.value
        order.delivery_zone = self.delivery_zone if self.delivery_type == DeliveryType.DELIVERY else None


class PricingPipeline:
    def __init__(
        self,
        validator: PriceValidator,
        discounts: DiscountResolver,
        delivery: DeliveryFeeCalculator,
        guard: OrderIntegrityGuard,
        tax_rate: float = 0.18,
    ):
        self.validator = validator
        self.discounts = discounts
        self.delivery = delivery
        self.guard = guard
        self.tax_rate = tax_rate

    async def quote(self, request: QuoteRequest, require_items: bool = True) -> Quote:
        lines: Tuple[OrderLine, ...] = ()
        mismatches: Tuple[PriceMismatch, ...] = ()
        if request.items:
            cart = await self.validator.validate(request.items)
            lines, mismatches = cart.lines, cart.mismatches
            subtotal_before = cart.subtotal
            weight = cart.weight
        elif not require_items and is_finite_non_negative(request.subtotal):
            logger.warning(
                "No items provided, using client subtotal for the estimate",
                extra={'extra_fields': {'event': 'client_subtotal_used', 'user_id': request.user_id}}
            )
            subtotal_before = round2(as_number(request.subtotal))
            weight = to_decimal(as_number(request.total_weight)) if is_finite_non_negative(request.total_weight) else ZERO
        elif require_items:
            raise InvalidItems("Order items are required")
        else:
            raise InvalidItems("Must provide either an items array or a valid subtotal")

        discount = await self.discounts.resolve(subtotal_before, request.coupon_code, request.user_id)
        subtotal_after = discounted_subtotal(subtotal_before, discount.amount)
        fee = self.delivery.fee(request.delivery_type, request.delivery_zone, weight, subtotal_after)
        totals = assemble_totals(subtotal_before, discount.amount, fee, self.tax_rate)
        self._log_delivery_mismatch(request, fee, weight, subtotal_after)

        total_check = None
        if request.client_total is not None:
            total_check = self.guard.reconcile(request.client_total, totals.total, request.user_id)

        logger.info(
            "Quote computed",
            extra={'extra_fields': {
                'user_id': request.user_id,
                'subtotal_before_discount': float(subtotal_before),
                'discount_type': discount.type.value if discount.type else None,
                'discount_amount': float(discount.amount),
                'delivery_cost': float(totals.delivery_cost),
                'tax': float(totals.tax),
                'total': float(totals.total),
            }}
        )
        return Quote(
            subtotal_before_discount=subtotal_before,
            discount=discount,
            totals=totals,
            total_weight=weight,
            delivery_type=request.delivery_type,
            delivery_zone=request.delivery_zone,
            lines=lines,
            mismatches=mismatches,
            total_check=total_check,
        )

    def _log_delivery_mismatch(self, request: QuoteRequest, fee: Decimal, weight: Decimal, subtotal: Decimal) -> None:
        client_fee = as_number(request.client_delivery_cost)
        if client_fee is None:
            return
        if math.isfinite(client_fee) and abs(to_decimal(client_fee) - fee) < to_decimal("0.01"):
            return
        logger.warning(
            f"Delivery cost mismatch: client={client_fee}, expected={fee}, zone={request.delivery_zone}, "
            f"weight={weight}, subtotal={subtotal}",
            extra={'extra_fields': {'event': 'delivery_cost_mismatch', 'user_id': request.user_id}}
        )
