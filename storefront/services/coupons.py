"""Coupon ledger: validation, discount computation and redemption.

Redemption never does read-modify-write in Python. The coupon's
``used_count`` doubles as a row version: the increment is an UPDATE guarded
by the count that was validated, so a redemption that committed after our
read makes the guard match nothing and we re-validate against fresh state.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import exists, or_, and_, select, update
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    ConflictError,
    CouponBelowMinimumOrder,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
    CouponNotYetValid,
    CouponPerUserLimitReached,
    CouponUsageConflict,
    CouponUsageLimitReached,
    NotFoundError,
    ValidationError,
)
from storefront.core.utils import now_utc, to_naive_utc
from storefront.db.models import Coupon, CouponRedemption, DiscountType, Order
from storefront.schemas import CouponCreate, CouponUpdate
from storefront.services.pricing import ZERO, to_money

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Redemption:
    coupon: Coupon
    cart_total: Decimal
    discount: Decimal

    @property
    def code(self) -> str:
        return self.coupon.code

    @property
    def new_total(self) -> Decimal:
        return to_money(self.cart_total - self.discount)


def canonical_code(code: str) -> str:
    return code.strip().upper()


def find_coupon(db: Session, code: str, *, fresh: bool = False) -> Optional[Coupon]:
    stmt = select(Coupon).where(Coupon.code == canonical_code(code))
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def user_usage(db: Session, coupon_id: int, user_id: str) -> Optional[int]:
    """The caller's recorded usage, or None when they never redeemed this coupon."""
    return db.execute(
        select(CouponRedemption.used_count).where(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.user_id == user_id,
        )
    ).scalar_one_or_none()


def compute_discount(coupon: Coupon, cart_total: Decimal) -> Decimal:
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = cart_total * coupon.discount_value / 100
        if coupon.max_discount is not None and discount > coupon.max_discount:
            discount = coupon.max_discount
    else:
        # fixed amounts never push the total below zero
        discount = min(coupon.discount_value, cart_total)
    return to_money(discount)


def _check(coupon: Optional[Coupon], code: str, cart_total: Decimal, user_id: Optional[str],
           used_by_user: Optional[int], now: datetime) -> None:
    """Run the eligibility checks in order; the first failure wins."""
    if coupon is None:
        raise CouponNotFound(canonical_code(code))
    if not coupon.is_active:
        raise CouponInactive(coupon.code)
    if now < coupon.valid_from:
        raise CouponNotYetValid(coupon.code)
    if now > coupon.valid_until:
        raise CouponExpired(coupon.code)
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponUsageLimitReached(coupon.code)
    if user_id and coupon.per_user_limit and (used_by_user or 0) >= coupon.per_user_limit:
        raise CouponPerUserLimitReached(coupon.code, coupon.per_user_limit)
    if cart_total < coupon.min_order_amount:
        raise CouponBelowMinimumOrder(coupon.code, coupon.min_order_amount)


def _evaluate(db: Session, code: str, cart_total: Decimal, user_id: Optional[str],
              now: datetime, fresh: bool):
    coupon = find_coupon(db, code, fresh=fresh)
    used_by_user = user_usage(db, coupon.id, user_id) if coupon is not None and user_id else None
    _check(coupon, code, cart_total, user_id, used_by_user, now)
    return coupon, used_by_user, compute_discount(coupon, cart_total)


def preview(db: Session, code: str, cart_total, user_id: Optional[str] = None,
            now: Optional[datetime] = None) -> Redemption:
    """Validate a coupon and price the discount without recording any usage."""
    if not code or not code.strip():
        raise ValidationError("Coupon code is required")
    if cart_total is None or Decimal(str(cart_total)) <= 0:
        raise ValidationError("Valid cart total is required")
    cart_total = Decimal(str(cart_total))
    coupon, _, discount = _evaluate(db, code, cart_total, user_id, now or now_utc(), fresh=False)
    return Redemption(coupon=coupon, cart_total=cart_total, discount=discount)


def _claim(db: Session, coupon: Coupon, user_id: Optional[str], used_by_user: Optional[int]) -> bool:
    """Increment usage only if nobody redeemed since we validated.

    Returns False when the guard on ``used_count`` matched no row.
    """
    seen = coupon.used_count
    result = db.execute(
        update(Coupon)
        .where(Coupon.id == coupon.id, Coupon.used_count == seen)
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    if user_id:
        if used_by_user is None:
            db.add(CouponRedemption(coupon_id=coupon.id, user_id=user_id, used_count=1))
            db.flush()
        else:
            per_user = db.execute(
                update(CouponRedemption)
                .where(
                    CouponRedemption.coupon_id == coupon.id,
                    CouponRedemption.user_id == user_id,
                    CouponRedemption.used_count == used_by_user,
                )
                .values(used_count=CouponRedemption.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            if per_user.rowcount != 1:
                # the coupon increment above is rolled back with the caller's transaction
                raise CouponUsageConflict(coupon.code)

    db.refresh(coupon)
    return True


def redeem(db: Session, code: str, cart_total, user_id: Optional[str] = None,
           now: Optional[datetime] = None, attempts: Optional[int] = None) -> Redemption:
    """Validate and record one use of a coupon inside the caller's transaction.

    The caller owns the transaction: committing makes the redemption durable,
    rolling back discards it together with whatever else failed.
    """
    cart_total = Decimal(str(cart_total))
    now = now or now_utc()
    attempts = attempts or settings.COUPON_REDEEM_ATTEMPTS

    for attempt in range(1, attempts + 1):
        coupon, used_by_user, discount = _evaluate(db, code, cart_total, user_id, now, fresh=True)
        if _claim(db, coupon, user_id, used_by_user):
            logger.info(
                "Coupon redeemed",
                code=coupon.code,
                user_id=user_id,
                discount=str(discount),
                used_count=coupon.used_count,
            )
            return Redemption(coupon=coupon, cart_total=cart_total, discount=discount)
        logger.info("Coupon redemption lost a race, re-validating", code=coupon.code, attempt=attempt)

    raise CouponUsageConflict(canonical_code(code))


# --- Administration ------------------------------------------------------------

def _validate_terms(discount_type: str, discount_value: Decimal, valid_from: datetime,
                    valid_until: datetime, min_order_amount: Decimal) -> None:
    if discount_type not in (DiscountType.PERCENTAGE.value, DiscountType.FIXED.value):
        raise ValidationError("discountType must be 'percentage' or 'fixed'")
    if discount_value < 0:
        raise ValidationError("discountValue must not be negative")
    if discount_type == DiscountType.PERCENTAGE.value and discount_value > 100:
        raise ValidationError("Percentage discount must be between 0 and 100")
    if min_order_amount < 0:
        raise ValidationError("minOrderAmount must not be negative")
    if valid_until < valid_from:
        raise ValidationError("validUntil must not be before validFrom")


def create_coupon(db: Session, payload: CouponCreate) -> Coupon:
    code = canonical_code(payload.code)
    if not code:
        raise ValidationError("Coupon code is required")
    valid_from = to_naive_utc(payload.valid_from) if payload.valid_from else now_utc()
    valid_until = to_naive_utc(payload.valid_until)
    min_order = payload.min_order_amount or ZERO
    _validate_terms(payload.discount_type, payload.discount_value, valid_from, valid_until, min_order)

    if find_coupon(db, code) is not None:
        raise ConflictError("Coupon code already exists")

    coupon = Coupon(
        code=code,
        description=payload.description or "",
        discount_type=payload.discount_type,
        discount_value=payload.discount_value,
        min_order_amount=min_order,
        max_discount=payload.max_discount or None,
        usage_limit=payload.usage_limit or None,
        per_user_limit=payload.per_user_limit or 1,
        used_count=0,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=payload.is_active,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    logger.info("Coupon created", code=coupon.code, discount_type=coupon.discount_type)
    return coupon


def list_coupons(db: Session, active: Optional[bool] = None) -> List[Coupon]:
    now = now_utc()
    stmt = select(Coupon)
    if active is True:
        stmt = stmt.where(and_(Coupon.is_active.is_(True), Coupon.valid_until >= now))
    elif active is False:
        stmt = stmt.where(or_(Coupon.is_active.is_(False), Coupon.valid_until < now))
    stmt = stmt.order_by(Coupon.created_at.desc(), Coupon.id.desc())
    return list(db.execute(stmt).scalars().all())


def get_coupon(db: Session, coupon_id: int) -> Coupon:
    coupon = db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def update_coupon(db: Session, coupon_id: int, payload: CouponUpdate) -> Coupon:
    coupon = get_coupon(db, coupon_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in ("valid_from", "valid_until"):
        if changes.get(field) is not None:
            changes[field] = to_naive_utc(changes[field])
    # zero caps mean "no cap", same as on create
    for field in ("max_discount", "usage_limit"):
        if field in changes:
            changes[field] = changes[field] or None
    if "per_user_limit" in changes:
        changes["per_user_limit"] = changes["per_user_limit"] or 1
    for k, v in changes.items():
        if v is None and k in ("discount_type", "discount_value", "valid_from", "valid_until", "is_active"):
            raise ValidationError(f"{k} cannot be cleared")
        setattr(coupon, k, v)

    _validate_terms(coupon.discount_type, coupon.discount_value, coupon.valid_from,
                    coupon.valid_until, coupon.min_order_amount or ZERO)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def delete_coupon(db: Session, coupon_id: int) -> None:
    coupon = get_coupon(db, coupon_id)
    referenced = db.execute(select(exists().where(Order.coupon_code == coupon.code))).scalar()
    if referenced:
        raise ConflictError("Coupon is referenced by existing orders; deactivate it instead")
    db.delete(coupon)
    db.commit()
    logger.info("Coupon deleted", code=coupon.code)
