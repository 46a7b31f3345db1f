from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.infrastructure.db import get_db
from app.application.discounts import CouponService, serialize_coupon
from app.application.schemas import CouponCreate, CouponUpdate
from app.auth_local import CurrentUser
from .deps import require_admin

router = APIRouter(prefix="/coupons", tags=["coupons"])

@router.get("")
def list_coupons(_: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return {"coupons": [serialize_coupon(c) for c in CouponService(db).list()]}

@router.post("", status_code=201)
def create_coupon(payload: CouponCreate, _: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    coupon = CouponService(db).create(
        payload.code,
        payload.percentage,
        payload.expires_at,
        user_id=payload.user_id,
        max_uses=payload.max_uses,
        is_active=payload.is_active,
    )
    return serialize_coupon(coupon)

@router.get("/{coupon_id}")
def get_coupon(coupon_id: int, _: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return serialize_coupon(CouponService(db).get(coupon_id))

@router.patch("/{coupon_id}")
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Only the fields present in the body change."""
    changes = payload.model_dump(exclude_unset=True)
    return serialize_coupon(CouponService(db).update(coupon_id, changes))

@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: int, _: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    CouponService(db).delete(coupon_id)
    return {"message": "Coupon deleted"}
