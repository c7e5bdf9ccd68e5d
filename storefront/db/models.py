from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, Numeric, UniqueConstraint
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from storefront.db.session import Base
from storefront.core.utils import now_utc

Money = Numeric(12, 2)

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class Coupon(Base):
    __tablename__ = "coupons"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    min_order_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    per_user_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=1)
    # doubles as the row version for compare-and-set redemption
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(), default=lambda: now_utc())
    valid_until: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: now_utc())
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: now_utc(), onupdate=lambda: now_utc())

    redemptions = relationship("CouponRedemption", back_populates="coupon", cascade="all, delete-orphan")

class CouponRedemption(Base):
    """Per-user usage counter for a coupon."""
    __tablename__ = "coupon_redemptions"
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_redemptions_coupon_user"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    coupon = relationship("Coupon", back_populates="redemptions")

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255))
    customer_email: Mapped[str] = mapped_column(String(255), index=True)
    customer_phone: Mapped[str] = mapped_column(String(32))
    address_line1: Mapped[str] = mapped_column(String(255))
    address_line2: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(120))
    state: Mapped[str] = mapped_column(String(120))
    pincode: Mapped[str] = mapped_column(String(32))
    country: Mapped[str] = mapped_column(String(64))
    coupon_code: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(16))
    order_status: Mapped[str] = mapped_column(String(32), default=OrderStatus.PENDING.value)
    subtotal: Mapped[Decimal] = mapped_column(Money)
    shipping: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    delivery_estimate: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: now_utc())
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: now_utc(), onupdate=lambda: now_utc())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[str] = mapped_column(String(64))
    variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    weight: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer)
    name_snapshot: Mapped[str] = mapped_column(String(255))
    price_snapshot: Mapped[Decimal] = mapped_column(Money)
    image_snapshot: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    order = relationship("Order", back_populates="items")
