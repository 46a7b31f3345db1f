"""Typed records flowing through the pricing pipeline.

Each record validates its own invariants on construction so the pipeline
stages never re-check loosely typed payload fields.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidPrice, InvalidProduct, InvalidQuantity
from .money import ZERO, as_number, is_finite_non_negative, percentage_of, round2, to_decimal


def parse_quantity(raw: Any, label: str = "item") -> int:
    """Missing or unreadable quantities default to 1; zero is an error."""
    number = as_number(raw)
    if number is None or math.isnan(number):
        return 1
    if not math.isfinite(number) or number <= 0:
        raise InvalidQuantity(f"Item {label} has invalid quantity: {raw}")
    if not number.is_integer():
        raise InvalidQuantity(f"Item {label} has a fractional quantity: {raw}")
    return int(number)


def parse_custom_price(raw: Any, label: str = "item") -> Decimal:
    if raw is None:
        return round2(ZERO)
    if not is_finite_non_negative(raw):
        raise InvalidPrice(f"Item {label} has invalid price: {raw}")
    return round2(as_number(raw))


def display_text(value: Any) -> Optional[str]:
    """Catalog text may be a plain string or a translation map like ``{"en": ..., "he": ...}``."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        preferred = value.get("en")
        if isinstance(preferred, str) and preferred.strip():
            return preferred
        for text in value.values():
            if isinstance(text, str) and text.strip():
                return text
    return None


@dataclass(frozen=True)
class CartItem:
    """A cart line exactly as the client submitted it."""

    product_id: Optional[str] = None
    client_price: Any = None
    quantity: Any = None
    name: Optional[str] = None
    image: Optional[str] = None
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None
    client_weight: Any = None

    @property
    def is_custom(self) -> bool:
        return not self.product_id

    def label(self, index: int) -> str:
        return self.name or self.product_id or f"#{index + 1}"


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    price: Decimal
    on_sale: bool = False
    sale_price: Decimal = ZERO
    weight: Decimal = ZERO
    name: Optional[str] = None
    image: Optional[str] = None

    @property
    def effective_price(self) -> Decimal:
        if self.on_sale and self.sale_price > 0:
            return self.sale_price
        return self.price

    @classmethod
    def from_document(cls, product_id: str, doc: Mapping[str, Any]) -> "ProductSnapshot":
        """Build a snapshot from a catalog document.

        Accepts both the camelCase storefront fields and the snake_case ones
        used by the products service.
        """
        price = doc.get("price")
        if not is_finite_non_negative(price):
            raise InvalidProduct(f"Product {product_id} has no valid price")
        sale_price = doc.get("salePrice", doc.get("sale_price"))
        weight = doc.get("weight")
        return cls(
            product_id=product_id,
            price=round2(as_number(price)),
            on_sale=bool(doc.get("onSale", doc.get("sale", False))),
            sale_price=round2(as_number(sale_price)) if is_finite_non_negative(sale_price) else ZERO,
            weight=to_decimal(as_number(weight)) if is_finite_non_negative(weight) else ZERO,
            name=display_text(doc.get("name")),
            image=display_text(doc.get("image")),
        )


@dataclass(frozen=True)
class OrderLine:
    """A normalized, priced order item."""

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    weight: Decimal = ZERO
    image: str = ""
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise InvalidQuantity(f"Item {self.name} has invalid quantity: {self.quantity}")
        if self.unit_price < 0:
            raise InvalidPrice(f"Item {self.name} has invalid price: {self.unit_price}")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def line_weight(self) -> Decimal:
        return self.weight * self.quantity

    def as_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "name": self.name,
            "image": self.image,
            "quantity": self.quantity,
            "price": float(self.unit_price),
            "weight": float(self.weight),
            "selectedSize": self.selected_size,
            "selectedColor": self.selected_color,
        }


@dataclass(frozen=True)
class PriceMismatch:
    product_id: str
    client_price: Optional[float]
    server_price: Decimal


class DiscountType(str, Enum):
    COUPON = "coupon"
    NEW_USER = "new_user"


@dataclass(frozen=True)
class Discount:
    type: Optional[DiscountType] = None
    percentage: Decimal = ZERO
    amount: Decimal = ZERO
    reason: str = ""
    coupon_code: Optional[str] = None
    coupon_id: Optional[int] = None

    def __post_init__(self):
        if not (0 <= self.percentage <= 100):
            raise ValueError(f"discount percentage out of range: {self.percentage}")
        if self.amount < 0:
            raise ValueError(f"negative discount amount: {self.amount}")

    @classmethod
    def none(cls, reason: str = "") -> "Discount":
        return cls(percentage=round2(ZERO), amount=round2(ZERO), reason=reason)

    @classmethod
    def percent_off(
        cls,
        discount_type: DiscountType,
        percentage: Any,
        subtotal_before_discount: Decimal,
        reason: str = "",
        coupon_code: Optional[str] = None,
        coupon_id: Optional[int] = None,
    ) -> "Discount":
        pct = to_decimal(percentage)
        # Never discount more than was ordered
        amount = round2(min(percentage_of(subtotal_before_discount, pct), subtotal_before_discount))
        return cls(
            type=discount_type,
            percentage=pct,
            amount=amount,
            reason=reason,
            coupon_code=coupon_code,
            coupon_id=coupon_id,
        )

    def as_dict(self) -> Optional[Dict[str, Any]]:
        if self.type is None or self.amount <= 0:
            return None
        body: Dict[str, Any] = {
            "amount": float(self.amount),
            "percentage": float(self.percentage),
            "type": self.type.value,
        }
        if self.type == DiscountType.COUPON:
            body["couponCode"] = self.coupon_code
        return body
