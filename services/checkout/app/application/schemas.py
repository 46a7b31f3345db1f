from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from app.domain.delivery import DeliveryType
from app.domain.pricing import CartItem
from app.domain.status import FailedOrderStatus, OrderStatus

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

class CartItemIn(CamelModel):
    product_id: Optional[Union[str, int]] = None
    # Older clients send the catalog id as "id"
    id: Optional[Union[str, int]] = None
    name: Optional[str] = None
    image: Optional[str] = None
    # Prices, quantities and weights stay loosely typed here; the domain
    # records decide what is a default and what is an error
    price: Any = None
    quantity: Any = None
    weight: Any = None
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None

    def to_cart_item(self) -> CartItem:
        product_id = self.product_id if self.product_id not in (None, "") else self.id
        return CartItem(
            product_id=str(product_id) if product_id not in (None, "") else None,
            client_price=self.price,
            quantity=self.quantity,
            name=self.name,
            image=self.image,
            selected_size=self.selected_size,
            selected_color=self.selected_color,
            client_weight=self.weight,
        )

class OrderMetadataIn(CamelModel):
    delivery_type: DeliveryType = DeliveryType.DELIVERY
    delivery_zone: Optional[str] = None
    total_weight: Any = None
    payment_method: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"

    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

class OrderCreate(CamelModel):
    items: List[CartItemIn] = Field(default_factory=list)
    shipping_address: Optional[Dict[str, Any]] = None
    phone: Optional[str] = None
    notes: str = ""
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    # Client-declared amounts are informational only
    subtotal: Any = None
    tax: Any = None
    total: Any = None
    transaction_id: Optional[str] = None
    coupon_code: Optional[str] = None
    metadata: OrderMetadataIn = Field(default_factory=OrderMetadataIn)

class OrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    payment_method: Optional[str] = None
    delivery_type: Optional[DeliveryType] = None

class CalculateTotalRequest(CamelModel):
    items: List[CartItemIn] = Field(default_factory=list)
    subtotal: Any = None
    tax: Any = None
    delivery_cost: Any = None
    # Without a type, a request that names no zone is estimated as pickup
    delivery_type: Optional[DeliveryType] = None
    delivery_zone: Optional[str] = None
    total_weight: Any = None
    coupon_code: Optional[str] = None

class PaymentProcessRequest(CalculateTotalRequest):
    amount: Any = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[Union[str, int]] = None
    gateway_response: Optional[Dict[str, Any]] = None

class FailedOrderCreate(CamelModel):
    transaction_id: Any = None
    order_data: Any = None
    error: Any = None
    error_details: Any = None

class FailedOrderUpdate(CamelModel):
    status: Optional[FailedOrderStatus] = None
    comment: Optional[str] = None

class CouponCreate(CamelModel):
    code: str
    percentage: float
    expires_at: datetime
    # Restricts the coupon to one account when set
    user_id: Optional[str] = None
    # null means unlimited redemptions
    max_uses: Optional[int] = 1
    is_active: bool = True

class CouponUpdate(CamelModel):
    code: Optional[str] = None
    percentage: Optional[float] = None
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    max_uses: Optional[int] = None
    is_active: Optional[bool] = None

class DiscountRead(CamelModel):
    amount: float
    percentage: float
    type: str
    coupon_code: Optional[str] = None

class CalculateTotalResponse(CamelModel):
    subtotal: float
    subtotal_before_discount: float
    discount: Optional[DiscountRead] = None
    tax: float
    delivery_cost: float
    total: float

class PaymentResult(CamelModel):
    success: bool
    transaction_id: str
    amount: float
    currency: str
    status: str
    message: str
    payment_gateway: str
