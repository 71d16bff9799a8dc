"""
Coupon pricing.

Validation is side-effect free: looking a code up never consumes an
allotment. The counter only moves in `claim_coupon`, called from checkout
inside the order transaction, as one conditional UPDATE so two concurrent
checkouts can't both take the last use.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import Coupon, CouponUsage
from .money import round_units, to_money

logger = logging.getLogger(__name__)

INVALID = "invalid code"
EXPIRED = "expired"
BELOW_MINIMUM = "minimum order not met"
EXHAUSTED = "exhausted"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; stored values are UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    subtotal = to_money(subtotal)
    value = to_money(coupon.discount_value)

    if coupon.discount_type == "percentage":
        discount = round_units(subtotal * value / Decimal(100))
    elif coupon.discount_type == "fixed":
        discount = value
    else:
        raise ValueError(f"Unknown discount_type {coupon.discount_type!r}")

    # Never discount below zero
    return min(discount, subtotal)


def rejection_reason(coupon: Optional[Coupon], subtotal: Decimal, now: Optional[datetime] = None) -> Optional[str]:
    """First failing rule, or None when the coupon applies."""
    now = now or datetime.now(timezone.utc)

    if coupon is None or not coupon.is_active:
        return INVALID

    starts_at = _aware(coupon.starts_at)
    if starts_at is not None and starts_at > now:
        return INVALID

    expires_at = _aware(coupon.expires_at)
    if expires_at is not None and expires_at < now:
        return EXPIRED

    if to_money(subtotal) < to_money(coupon.min_order_amount):
        return BELOW_MINIMUM

    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        return EXHAUSTED

    return None


def find_coupon(db: Session, code: str) -> Optional[Coupon]:
    code = normalize_code(code)
    if not code:
        return None
    return db.query(Coupon).filter(Coupon.code == code).first()


def validate_and_price(db: Session, code: str, subtotal: Decimal) -> Tuple[Coupon, Decimal]:
    coupon = find_coupon(db, code)
    reason = rejection_reason(coupon, subtotal)
    if reason:
        raise HTTPException(status_code=400, detail=reason)
    return coupon, compute_discount(coupon, subtotal)


def claim_coupon(db: Session, coupon: Coupon, order_id: int, user_id: str, discount: Decimal) -> CouponUsage:
    """
    Record one use of `coupon` against `order_id`. Must run inside the order
    transaction; the caller commits or rolls back.
    """
    result = db.execute(
        update(Coupon)
        .where(Coupon.id == coupon.id)
        .where((Coupon.max_uses.is_(None)) | (Coupon.used_count < Coupon.max_uses))
        .values(used_count=Coupon.used_count + 1)
    )
    if result.rowcount != 1:
        logger.info("coupon %s exhausted during checkout", coupon.code)
        raise HTTPException(status_code=400, detail=EXHAUSTED)

    usage = CouponUsage(
        coupon_id=coupon.id,
        order_id=order_id,
        user_id=user_id,
        discount_amount=discount,
    )
    db.add(usage)
    return usage
