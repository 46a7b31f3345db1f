from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Boolean, Text, JSON
from datetime import datetime
from typing import Optional

class Base(DeclarativeBase):
    pass

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    # User id from the identity provider (no FK - microservices pattern)
    customer_id: Mapped[str] = mapped_column(String(128), index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(30), default="new")
    # Pricing breakdown, always computed server-side
    subtotal_before_discount: Mapped[float] = mapped_column(Numeric(10,2))
    discount_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    discount_percentage: Mapped[float] = mapped_column(Numeric(5,2), default=0)
    discount_amount: Mapped[float] = mapped_column(Numeric(10,2), default=0)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    coupon_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    subtotal: Mapped[float] = mapped_column(Numeric(10,2))
    delivery_cost: Mapped[float] = mapped_column(Numeric(10,2), default=0)
    tax: Mapped[float] = mapped_column(Numeric(10,2))
    total: Mapped[float] = mapped_column(Numeric(10,2))
    total_weight: Mapped[float] = mapped_column(Numeric(10,3), default=0)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # Metadata
    delivery_type: Mapped[str] = mapped_column(String(20), default="delivery")
    delivery_zone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    extra_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    items: Mapped[list["OrderItem"]] = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    # Empty for custom line items
    product_id: Mapped[str] = mapped_column(String(128), default="")
    name: Mapped[str] = mapped_column(String(200))
    image: Mapped[str] = mapped_column(String(500), default="")
    quantity: Mapped[int]
    unit_price: Mapped[float] = mapped_column(Numeric(10,2))
    weight: Mapped[float] = mapped_column(Numeric(10,3), default=0)
    selected_size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    selected_color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    order: Mapped[Order] = relationship("Order", back_populates="items")

class Coupon(Base):
    __tablename__ = "coupons"
    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    percentage: Mapped[float] = mapped_column(Numeric(5,2))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Restricts the coupon to a single user when set
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # None means unlimited redemptions; set explicitly on creation
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    last_used_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class FailedOrder(Base):
    __tablename__ = "failed_orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    amount: Mapped[float] = mapped_column(Numeric(10,2))
    order_data: Mapped[dict] = mapped_column(JSON)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    comment: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    # Set when another user reused this transaction id
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
