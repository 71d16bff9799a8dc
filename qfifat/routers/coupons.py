from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..coupons import validate_and_price
from ..db import get_db
from ..schemas import CouponQuoteOut, CouponValidateIn
from ..security import CurrentUser, require_user

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponQuoteOut)
def validate_coupon(
    payload: CouponValidateIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    # Quote only; the use is recorded when the order is placed
    coupon, discount = validate_and_price(db, payload.code, payload.subtotal)
    return CouponQuoteOut(
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=float(coupon.discount_value),
        discount_amount=float(discount),
    )
