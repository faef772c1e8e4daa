from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.infrastructure.db import get_db
from storefront.application.coupon_service import CouponService
from storefront.application.schemas import (
    CouponCreate,
    CouponRead,
    CouponStats,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidationRead,
)
from storefront.domain.models import Coupon
from .auth import CurrentUser, get_optional_user, require_admin

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _read(coupon: Coupon, usage_count: int = 0) -> CouponRead:
    read = CouponRead.model_validate(coupon)
    read.usage_count = usage_count
    return read


@router.post("/validate", response_model=CouponValidationRead)
def validate_coupon(
    payload: CouponValidateRequest,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    user_id = user.id if user else payload.user_id
    result = CouponService(db).validate(payload.code, payload.subtotal, user_id)
    return CouponValidationRead(
        coupon_id=result.coupon.id,
        code=result.coupon.code,
        discount_percentage=float(result.coupon.discount_percentage),
        discount_amount=result.discount_amount,
        expires_at=result.coupon.expires_at,
    )


@router.get("/stats", response_model=CouponStats)
def coupon_stats(db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    return CouponService(db).statistics()


@router.get("", response_model=list[CouponRead])
def list_coupons(db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    return [_read(coupon, count) for coupon, count in CouponService(db).list()]


@router.get("/{coupon_id}", response_model=CouponRead)
def get_coupon(coupon_id: int, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    return _read(*CouponService(db).get(coupon_id))


@router.post("", response_model=CouponRead, status_code=201)
def create_coupon(payload: CouponCreate, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    return _read(CouponService(db).create(payload))


@router.put("/{coupon_id}", response_model=CouponRead)
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    service = CouponService(db)
    service.update(coupon_id, payload)
    return _read(*service.get(coupon_id))


@router.delete("/{coupon_id}", status_code=204)
def delete_coupon(coupon_id: int, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    CouponService(db).delete(coupon_id)
    return None
