"""Order assembly and order lifecycle.

``create_order`` is the checkout pipeline: validate the request, re-price every
line from the catalog, redeem the coupon, price the order, allocate a unique
order number and commit it all in one transaction. Nothing is stored, and no
coupon usage is recorded, unless every step succeeds.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, List, Optional
import secrets
import time

import structlog
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    AuthorizationError,
    BusinessRuleViolation,
    ConflictError,
    CouponUsageConflict,
    OrderNotFound,
    ProductNotFound,
    ValidationError,
)
from storefront.core.utils import now_utc
from storefront.db.models import Order, OrderItem, OrderStatus, PaymentMethod
from storefront.schemas import OrderCreate, OrderStatusUpdate
from storefront.services import coupons as ledger
from storefront.services.catalog import CatalogClient
from storefront.services.pricing import compute_totals, subtotal_of

logger = structlog.get_logger(__name__)

PAYMENT_METHODS = {m.value for m in PaymentMethod}
ORDER_STATUSES = [s.value for s in OrderStatus]
HAPPY_PATH = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]
TERMINAL = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

Notifier = Callable[[dict], None]


@dataclass(frozen=True)
class ResolvedLine:
    product_id: str
    quantity: int
    name: str
    price: Decimal
    image: Optional[str] = None
    variant_id: Optional[str] = None
    weight: Optional[str] = None


# --- Order numbers -------------------------------------------------------------

def _base36(n: int) -> str:
    digits = []
    while True:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
        if n == 0:
            return "".join(reversed(digits))


def generate_order_number() -> str:
    """``ORD-<ms timestamp, base36>-<6 random base36 chars>``."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{settings.ORDER_NUMBER_PREFIX}-{stamp}-{suffix}"


def order_number_taken(db: Session, number: str) -> bool:
    return bool(db.execute(select(exists().where(Order.order_number == number))).scalar())


def allocate_order_number(db: Session, generate: Callable[[], str] = generate_order_number) -> str:
    # The unique constraint on orders.order_number is what actually guarantees
    # uniqueness; this check only avoids most constraint violations.
    while True:
        candidate = generate()
        if not order_number_taken(db, candidate):
            return candidate
        logger.info("Order number already in use, regenerating", order_number=candidate)


# --- Checkout ------------------------------------------------------------------

def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_request(payload: OrderCreate) -> None:
    if any(_blank(v) for v in (payload.customer_name, payload.customer_email, payload.customer_phone)) \
            or payload.shipping_address is None or payload.cart_items is None or _blank(payload.payment_method):
        raise ValidationError(
            "Missing required fields: customerName, customerEmail, customerPhone, "
            "shippingAddress, cartItems, paymentMethod"
        )
    addr = payload.shipping_address
    if any(_blank(v) for v in (addr.line1, addr.city, addr.state, addr.pincode)):
        raise ValidationError("Shipping address must include: line1, city, state, pincode")
    if payload.payment_method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be 'razorpay' or 'cod'")
    if not payload.cart_items:
        raise ValidationError("cartItems must be a non-empty array")
    for line in payload.cart_items:
        if _blank(line.product_id) or line.quantity is None:
            raise ValidationError("Each cartItem must have productId and quantity")
        if line.quantity < 1:
            raise ValidationError("Each cartItem quantity must be at least 1")


def resolve_lines(catalog: CatalogClient, cart_items) -> List[ResolvedLine]:
    """Look every line up in the catalog; the catalog price is the only price used."""
    lines = []
    for item in cart_items:
        product = catalog.find_product(item.product_id)
        if product is None:
            raise ProductNotFound(item.product_id)
        lines.append(ResolvedLine(
            product_id=product.id,
            quantity=item.quantity,
            name=product.name,
            price=product.price,
            image=product.image,
            variant_id=item.variant_id,
            weight=item.weight,
        ))
    return lines


def delivery_estimate(today: Optional[date] = None) -> str:
    today = today or now_utc().date()
    return (today + timedelta(days=settings.DELIVERY_ESTIMATE_DAYS)).isoformat()


def _new_order(number: str, payload: OrderCreate, user_id: Optional[str], lines: List[ResolvedLine],
               totals, coupon_code: Optional[str]) -> Order:
    addr = payload.shipping_address
    order = Order(
        order_number=number,
        user_id=user_id,
        customer_name=payload.customer_name.strip(),
        customer_email=str(payload.customer_email).strip().lower(),
        customer_phone=payload.customer_phone.strip(),
        address_line1=addr.line1,
        address_line2=addr.line2 or "",
        city=addr.city,
        state=addr.state,
        pincode=addr.pincode,
        country=addr.country or settings.DEFAULT_COUNTRY,
        coupon_code=coupon_code,
        payment_method=payload.payment_method,
        order_status=OrderStatus.PENDING.value,
        delivery_estimate=delivery_estimate(),
        subtotal=totals.subtotal,
        shipping=totals.shipping,
        tax=totals.tax,
        discount=totals.discount,
        total_amount=totals.total,
    )
    for line in lines:
        order.items.append(OrderItem(
            product_id=line.product_id,
            variant_id=line.variant_id,
            weight=line.weight,
            quantity=line.quantity,
            name_snapshot=line.name,
            price_snapshot=line.price,
            image_snapshot=line.image,
        ))
    return order


def create_order(db: Session, payload: OrderCreate, user_id: Optional[str], catalog: CatalogClient,
                 notify: Optional[Notifier] = None,
                 generate: Callable[[], str] = generate_order_number) -> Order:
    validate_request(payload)
    lines = resolve_lines(catalog, payload.cart_items)
    subtotal = subtotal_of(lines)
    coupon_code = payload.coupon_code if not _blank(payload.coupon_code) else None

    while True:
        number = None
        try:
            discount = Decimal("0")
            applied_code = None
            if coupon_code:
                redemption = ledger.redeem(db, coupon_code, subtotal, user_id)
                discount, applied_code = redemption.discount, redemption.code
            totals = compute_totals(lines, discount)
            number = allocate_order_number(db, generate)
            order = _new_order(number, payload, user_id, lines, totals, applied_code)
            db.add(order)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if number is None and coupon_code:
                # a concurrent first redemption by the same user won the per-user row
                raise CouponUsageConflict(ledger.canonical_code(coupon_code)) from exc
            if number is None or not order_number_taken(db, number):
                raise ConflictError("Order could not be stored because of a concurrent update") from exc
            # lost the number to a concurrent checkout; the coupon use was rolled back too
            logger.warning("Order number taken concurrently, retrying checkout", order_number=number)
            continue
        except Exception:
            db.rollback()
            raise
        break

    db.refresh(order)
    logger.info(
        "Order created",
        order_number=order.order_number,
        user_id=user_id,
        total_amount=str(order.total_amount),
        coupon_code=order.coupon_code,
    )
    if notify is not None:
        try:
            notify(order_event(order))
        except Exception as exc:
            logger.warning("Order notification failed", order_number=order.order_number, error=str(exc))
    return order


def order_event(order: Order) -> dict:
    return {
        "type": "order.created",
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "shipping_address": ", ".join(filter(None, [
            order.address_line1, order.address_line2, order.city, order.state, order.pincode, order.country,
        ])),
        "items": [
            {
                "product_id": it.product_id,
                "name": it.name_snapshot,
                "quantity": it.quantity,
                "price": str(it.price_snapshot),
                "line_total": str(it.price_snapshot * it.quantity),
            }
            for it in order.items
        ],
        "payment_method": order.payment_method,
        "coupon_code": order.coupon_code,
        "subtotal": str(order.subtotal),
        "shipping": str(order.shipping),
        "tax": str(order.tax),
        "discount": str(order.discount),
        "total_amount": str(order.total_amount),
        "delivery_estimate": order.delivery_estimate,
    }


# --- Lifecycle -----------------------------------------------------------------

def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise OrderNotFound(str(order_id))
    return order


def _verify_email(order: Order, verify_email: Optional[str]) -> Order:
    if verify_email and order.customer_email.lower() != verify_email.strip().lower():
        raise AuthorizationError("Email verification failed. Order not found for this email.")
    return order


def get_order_by_id(db: Session, order_id: int, verify_email: Optional[str] = None) -> Order:
    return _verify_email(get_order(db, order_id), verify_email)


def get_order_by_number(db: Session, order_number: str, verify_email: Optional[str] = None) -> Order:
    order = db.execute(select(Order).where(Order.order_number == order_number)).scalar_one_or_none()
    if not order:
        raise OrderNotFound(order_number)
    return _verify_email(order, verify_email)


def list_orders_for_user(db: Session, user_id: str) -> List[Order]:
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(db.execute(stmt).scalars().all())


def list_orders_by_email(db: Session, email: Optional[str]) -> List[Order]:
    if _blank(email):
        raise ValidationError("Please provide email query parameter or order number")
    stmt = (
        select(Order)
        .where(Order.customer_email == email.strip().lower())
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(db.execute(stmt).scalars().all())


def cancel_order(db: Session, order_id: int, user_id: Optional[str], is_admin: bool = False,
                 reason: Optional[str] = None) -> Order:
    order = get_order(db, order_id)
    if not is_admin and (user_id is None or order.user_id != user_id):
        raise AuthorizationError("You are not authorized to cancel this order")
    if order.order_status == OrderStatus.CANCELLED.value:
        raise BusinessRuleViolation("Order is already cancelled")
    if order.order_status == OrderStatus.DELIVERED.value:
        raise BusinessRuleViolation("Cannot cancel a delivered order")

    order.order_status = OrderStatus.CANCELLED.value
    if reason:
        order.cancellation_reason = reason
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Order cancelled", order_number=order.order_number, by_admin=is_admin)
    return order


def _check_transition(current: str, new: str) -> None:
    if new == current:
        return
    if current in TERMINAL:
        raise BusinessRuleViolation(f"Order is already {current} and cannot change status")
    if new == OrderStatus.CANCELLED.value:
        return
    if HAPPY_PATH.index(new) < HAPPY_PATH.index(current):
        raise BusinessRuleViolation(f"Order status cannot move back from {current} to {new}")


def update_order_status(db: Session, order_id: int, payload: OrderStatusUpdate) -> Order:
    """Administrative status change. Price fields are never touched."""
    if _blank(payload.order_status):
        raise ValidationError("Order status is required")
    if payload.order_status not in ORDER_STATUSES:
        raise ValidationError(f"Order status must be one of: {', '.join(ORDER_STATUSES)}")
    if payload.delivery_estimate:
        try:
            date.fromisoformat(payload.delivery_estimate)
        except ValueError:
            raise ValidationError("deliveryEstimate must be an ISO date (YYYY-MM-DD)")

    order = get_order(db, order_id)
    _check_transition(order.order_status, payload.order_status)

    previous = order.order_status
    order.order_status = payload.order_status
    if payload.tracking_number:
        order.tracking_number = payload.tracking_number
    if payload.delivery_estimate:
        order.delivery_estimate = payload.delivery_estimate
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Order status updated", order_number=order.order_number, previous=previous, status=order.order_status)
    return order
