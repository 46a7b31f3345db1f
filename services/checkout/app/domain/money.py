"""Money arithmetic shared by every price, discount, fee and tax computation.

Amounts are carried as ``Decimal`` and rounded with a single routine,
``round2``, at every intermediate step. Floats only appear at the JSON edge.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

Number = Union[int, float, Decimal]

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps the shortest repr, so 0.396 stays 0.396 instead of its
    # binary expansion
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Round half away from zero to 2 decimal places."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def as_number(value: Any) -> Optional[float]:
    """Coerce a loosely typed payload value to a float, or None if impossible."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_finite_non_negative(value: Any) -> bool:
    number = as_number(value)
    return number is not None and math.isfinite(number) and number >= 0


def percentage_of(amount: Number, percentage: Number) -> Decimal:
    return round2(to_decimal(amount) * to_decimal(percentage) / HUNDRED)


def discounted_subtotal(subtotal_before_discount: Number, discount_amount: Number) -> Decimal:
    return round2(max(ZERO, to_decimal(subtotal_before_discount) - to_decimal(discount_amount)))


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    delivery_cost: Decimal
    tax: Decimal
    total: Decimal

    def as_dict(self) -> Dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "deliveryCost": float(self.delivery_cost),
            "tax": float(self.tax),
            "total": float(self.total),
        }


def assemble_totals(
    subtotal_before_discount: Number,
    discount_amount: Number,
    delivery_fee: Number,
    tax_rate: Number,
) -> Totals:
    """Combine subtotal, discount, delivery and tax into the final total.

    ``total == round2(base + round2(base * tax_rate))`` where
    ``base == round2(subtotal + delivery_fee)``.
    """
    subtotal = discounted_subtotal(subtotal_before_discount, discount_amount)
    delivery_cost = round2(delivery_fee)
    base = round2(subtotal + delivery_cost)
    tax = round2(base * to_decimal(tax_rate))
    total = round2(base + tax)
    return Totals(subtotal=subtotal, delivery_cost=delivery_cost, tax=tax, total=total)
