from typing import List, Optional
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, get_optional_identity, require_admin
from storefront.schemas import CouponCreate, CouponRead, CouponUpdate, CouponValidate, CouponValidation
from storefront.services import coupons

router = APIRouter()

@router.post("/validate", response_model=CouponValidation)
def validate_coupon(
    payload: CouponValidate,
    identity: Optional[dict] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
):
    user_id = identity.get("sub") if identity else None
    r = coupons.preview(db, payload.code, payload.cart_total, user_id)
    return CouponValidation(
        code=r.code,
        description=r.coupon.description or "",
        discount_type=r.coupon.discount_type,
        discount_value=r.coupon.discount_value,
        discount=r.discount,
        cart_total=r.cart_total,
        new_total=r.new_total,
    )

@router.post("", response_model=CouponRead, status_code=201)
def create_coupon(payload: CouponCreate, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return CouponRead.model_validate(coupons.create_coupon(db, payload))

@router.get("", response_model=List[CouponRead])
def list_coupons(active: Optional[bool] = None, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return [CouponRead.model_validate(c) for c in coupons.list_coupons(db, active)]

@router.get("/{coupon_id}", response_model=CouponRead)
def get_coupon(coupon_id: int, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return CouponRead.model_validate(coupons.get_coupon(db, coupon_id))

@router.put("/{coupon_id}", response_model=CouponRead)
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    _admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return CouponRead.model_validate(coupons.update_coupon(db, coupon_id, payload))

@router.delete("/{coupon_id}", status_code=204)
def delete_coupon(coupon_id: int, _admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    coupons.delete_coupon(db, coupon_id)
    return Response(status_code=204)
