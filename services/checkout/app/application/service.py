from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from app.domain.delivery import DeliveryType
from app.domain.errors import (
    InvalidCoupon, InvalidItems, InvalidShippingAddress, InvalidStatusTransition, NotFound,
    OrderPersistenceFailed,
)
from app.domain.models import Order, OrderItem
from app.domain.status import ORDER_TRANSITIONS, OrderStatus, check_transition
from .pricing import PricingPipeline, QuoteRequest
from .discounts import CouponService
from .schemas import OrderCreate, OrderUpdate
from shared.core import get_logger
from datetime import datetime, timezone
from collections import Counter
from typing import Any, Dict, List, Optional
import uuid

logger = get_logger(__name__)

REQUIRED_ADDRESS_FIELDS = ("street", "city", "zipCode")
BEST_SELLER_WINDOW = 100
BEST_SELLER_COUNT = 20

def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None

def _num(value: Any) -> Optional[float]:
    return float(value) if value is not None else None

class OrderService:
    def __init__(self, db: Session, pipeline: Optional[PricingPipeline] = None,
                 coupons: Optional[CouponService] = None):
        self.db = db
        self.pipeline = pipeline
        self.coupons = coupons or CouponService(db)

    def _order_number(self, order: Order) -> str:
        """Order number in format ORD-YYYY-NNNNN, derived from the row id"""
        return f"ORD-{order.created_at.year}-{order.id:05d}"

    def _query(self):
        return select(Order).options(selectinload(Order.items))

    def get(self, order_id: int) -> Optional[Order]:
        return self.db.execute(self._query().where(Order.id == order_id)).scalar_one_or_none()

    def list_active(self) -> List[Order]:
        query = self._query().where(Order.archived_at.is_(None)).order_by(Order.created_at.desc(), Order.id.desc())
        return list(self.db.execute(query).scalars())

    def list_archived(self) -> List[Order]:
        query = self._query().where(Order.archived_at.is_not(None)).order_by(Order.archived_at.desc(), Order.id.desc())
        return list(self.db.execute(query).scalars())

    def list_for_customer(self, user_id: str, email: Optional[str] = None) -> List[Order]:
        """Caller's orders, newest first; falls back to orders placed under their e-mail."""
        query = self._query().order_by(Order.created_at.desc(), Order.id.desc())
        orders = list(self.db.execute(query.where(Order.customer_id == user_id)).scalars())
        if not orders and email:
            orders = list(self.db.execute(query.where(Order.customer_email == email)).scalars())
        return orders

    def best_sellers(self) -> List[str]:
        """Top product ids by quantity across the most recent orders."""
        recent = self.db.execute(
            self._query().order_by(Order.created_at.desc(), Order.id.desc()).limit(BEST_SELLER_WINDOW)
        ).scalars()
        sold = Counter()
        for order in recent:
            for item in order.items:
                if item.product_id:
                    sold[item.product_id] += item.quantity or 1
        return [product_id for product_id, _ in sold.most_common(BEST_SELLER_COUNT)]

    def _check_address(self, data: OrderCreate) -> None:
        address = data.shipping_address or {}
        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or "").strip()]
        if missing:
            raise InvalidShippingAddress(f"Missing delivery address fields: {', '.join(missing)}")

    async def create(self, data: OrderCreate, user_id: str, email: Optional[str] = None,
                     display_name: Optional[str] = None) -> Order:
        if not data.items:
            raise InvalidItems("Order items are required")
        meta = data.metadata
        if meta.delivery_type == DeliveryType.DELIVERY:
            self._check_address(data)

        quote = await self.pipeline.quote(QuoteRequest(
            user_id=user_id,
            items=[item.to_cart_item() for item in data.items],
            coupon_code=data.coupon_code,
            delivery_type=meta.delivery_type,
            delivery_zone=meta.delivery_zone,
            total_weight=meta.total_weight,
            client_total=data.total,
        ))

        now = _utcnow()
        order = Order(
            # Replaced by the id-derived number once the row is flushed
            order_number=f"PENDING-{uuid.uuid4().hex}",
            customer_id=user_id,
            customer_email=email or data.customer_email,
            customer_name=display_name or data.customer_name or "Customer",
            phone=data.phone or "",
            shipping_address=data.shipping_address if meta.delivery_type == DeliveryType.DELIVERY else None,
            notes=data.notes or "",
            status=OrderStatus.NEW.value,
            transaction_id=data.transaction_id,
            payment_method=meta.payment_method,
            extra_metadata=meta.extra_fields() or None,
            created_at=now,
            updated_at=now,
        )
        quote.apply_to(order)
        order.items = [self._order_item(line) for line in quote.lines]

        await run_in_threadpool(self._persist, order, quote.discount.coupon_id, user_id, data.transaction_id)

        logger.info(
            f"Order {order.order_number} created",
            extra={'extra_fields': {
                'event': 'order_created',
                'order_id': order.id,
                'user_id': user_id,
                'total': float(quote.total),
                'discount_type': order.discount_type,
                'price_mismatches': len(quote.mismatches),
            }}
        )
        return order

    def _persist(self, order: Order, coupon_id: Optional[int], user_id: str,
                 transaction_id: Optional[str]) -> None:
        self.db.add(order)
        try:
            self.db.flush()
            order.order_number = self._order_number(order)
            # Coupon use and order insert commit together or not at all
            if coupon_id is not None and not self.coupons.redeem(coupon_id, user_id):
                self.db.rollback()
                raise InvalidCoupon("Coupon has already been used")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to persist order", exc_info=True,
                         extra={'extra_fields': {'user_id': user_id, 'transaction_id': transaction_id}})
            raise OrderPersistenceFailed(str(e)) from e
        self.db.refresh(order)

    @staticmethod
    def _order_item(line) -> OrderItem:
        return OrderItem(
            product_id=line.product_id,
            name=line.name,
            image=line.image,
            quantity=line.quantity,
            unit_price=line.unit_price,
            weight=line.weight,
            selected_size=line.selected_size,
            selected_color=line.selected_color,
        )

    def update(self, order_id: int, data: OrderUpdate) -> Order:
        order = self.get(order_id)
        if not order:
            raise NotFound("Order not found")

        # Update only provided fields
        if data.status is not None:
            check_transition(ORDER_TRANSITIONS, order.status, data.status.value)
            order.status = data.status.value
        if data.payment_method is not None:
            order.payment_method = data.payment_method
        if data.delivery_type is not None:
            order.delivery_type = data.delivery_type.value
        order.updated_at = _utcnow()

        self.db.commit()
        self.db.refresh(order)
        return order

    def archive(self, order_id: int, admin_id: str) -> Order:
        order = self.get(order_id)
        if not order:
            raise NotFound("Order not found")
        if order.archived_at:
            raise InvalidStatusTransition("Order is already archived")
        order.archived_at = _utcnow()
        order.archived_by = admin_id
        order.updated_at = order.archived_at
        self.db.commit()
        self.db.refresh(order)
        return order

def serialize_order(order: Order) -> Dict[str, Any]:
    discount = None
    if order.discount_type:
        discount = {
            "type": order.discount_type,
            "percentage": _num(order.discount_percentage),
            "amount": _num(order.discount_amount),
            "couponCode": order.coupon_code,
        }
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerId": order.customer_id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "phone": order.phone,
        "shippingAddress": order.shipping_address,
        "notes": order.notes,
        "status": order.status,
        "items": [
            {
                "productId": item.product_id,
                "name": item.name,
                "image": item.image,
                "quantity": item.quantity,
                "price": _num(item.unit_price),
                "weight": _num(item.weight),
                "selectedSize": item.selected_size,
                "selectedColor": item.selected_color,
            }
            for item in order.items
        ],
        "subtotalBeforeDiscount": _num(order.subtotal_before_discount),
        "discount": discount,
        "subtotal": _num(order.subtotal),
        "deliveryCost": _num(order.delivery_cost),
        "tax": _num(order.tax),
        "total": _num(order.total),
        "transactionId": order.transaction_id,
        "metadata": {
            **(order.extra_metadata or {}),
            "deliveryType": order.delivery_type,
            "deliveryZone": order.delivery_zone,
            "paymentMethod": order.payment_method,
            "totalWeight": _num(order.total_weight),
        },
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
        "archivedAt": _iso(order.archived_at),
        "archivedBy": order.archived_by,
    }
