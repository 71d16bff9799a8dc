from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException

from qfifat.coupons import (
    BELOW_MINIMUM,
    EXHAUSTED,
    EXPIRED,
    INVALID,
    claim_coupon,
    compute_discount,
    rejection_reason,
    validate_and_price,
)
from qfifat.models import Coupon, CouponUsage

from conftest import make_coupon


def _coupon(**kw):
    base = dict(
        code="SAVE20",
        discount_type="percentage",
        discount_value=Decimal("20"),
        min_order_amount=Decimal("1000"),
        max_uses=None,
        used_count=0,
        is_active=True,
        starts_at=None,
        expires_at=None,
    )
    base.update(kw)
    return Coupon(**base)


class TestComputeDiscount:
    def test_percentage(self):
        assert compute_discount(_coupon(), Decimal("5000")) == Decimal("1000.00")

    def test_percentage_rounds_to_whole_units(self):
        c = _coupon(discount_value=Decimal("15"))
        # 15% of 1234 = 185.1
        assert compute_discount(c, Decimal("1234")) == Decimal("185.00")

    def test_fixed_clamped_to_subtotal(self):
        c = _coupon(discount_type="fixed", discount_value=Decimal("500"))
        assert compute_discount(c, Decimal("300")) == Decimal("300.00")

    def test_fixed_below_subtotal(self):
        c = _coupon(discount_type="fixed", discount_value=Decimal("500"))
        assert compute_discount(c, Decimal("2000")) == Decimal("500.00")

    @pytest.mark.parametrize("value", ["100", "150"])
    def test_percentage_never_exceeds_subtotal(self, value):
        c = _coupon(discount_value=Decimal(value))
        assert compute_discount(c, Decimal("800")) <= Decimal("800")


class TestRejectionReason:
    def test_valid(self):
        assert rejection_reason(_coupon(), Decimal("5000")) is None

    def test_missing(self):
        assert rejection_reason(None, Decimal("5000")) == INVALID

    def test_inactive(self):
        assert rejection_reason(_coupon(is_active=False), Decimal("5000")) == INVALID

    def test_not_started(self):
        future = datetime.now(timezone.utc) + timedelta(days=2)
        assert rejection_reason(_coupon(starts_at=future), Decimal("5000")) == INVALID

    def test_expired(self):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        assert rejection_reason(_coupon(expires_at=past), Decimal("5000")) == EXPIRED

    def test_naive_expiry_treated_as_utc(self):
        past = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
        assert rejection_reason(_coupon(expires_at=past), Decimal("5000")) == EXPIRED

    def test_below_minimum(self):
        assert rejection_reason(_coupon(), Decimal("999")) == BELOW_MINIMUM

    def test_exhausted(self):
        assert rejection_reason(_coupon(max_uses=3, used_count=3), Decimal("5000")) == EXHAUSTED

    def test_priority_expired_before_minimum(self):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        c = _coupon(expires_at=past, max_uses=1, used_count=1)
        assert rejection_reason(c, Decimal("10")) == EXPIRED

    def test_priority_minimum_before_exhausted(self):
        c = _coupon(max_uses=1, used_count=1)
        assert rejection_reason(c, Decimal("10")) == BELOW_MINIMUM


class TestValidateAndPrice:
    def test_lookup_is_case_insensitive(self, db):
        make_coupon(db)
        coupon, discount = validate_and_price(db, "  save20 ", Decimal("5000"))
        assert coupon.code == "SAVE20"
        assert discount == Decimal("1000.00")

    def test_validation_does_not_consume(self, db):
        c = make_coupon(db, max_uses=1)
        validate_and_price(db, "SAVE20", Decimal("5000"))
        validate_and_price(db, "SAVE20", Decimal("5000"))
        db.refresh(c)
        assert c.used_count == 0

    def test_unknown_code(self, db):
        with pytest.raises(HTTPException) as exc:
            validate_and_price(db, "NOPE", Decimal("5000"))
        assert exc.value.status_code == 400
        assert exc.value.detail == INVALID


class TestClaimCoupon:
    def test_claim_refuses_past_cap(self, db):
        c = make_coupon(db, max_uses=1, used_count=1)
        with pytest.raises(HTTPException) as exc:
            claim_coupon(db, c, order_id=1, user_id="u", discount=Decimal("10"))
        assert exc.value.detail == EXHAUSTED
        db.rollback()
        db.refresh(c)
        assert c.used_count == 1

    def test_last_use_goes_to_one_checkout(self, db):
        from qfifat.db import SessionLocal

        make_coupon(db, max_uses=1)
        first, second = SessionLocal(), SessionLocal()
        try:
            # Both checkouts see the coupon as valid before either claims it
            c1, d1 = validate_and_price(first, "SAVE20", Decimal("5000"))
            c2, d2 = validate_and_price(second, "SAVE20", Decimal("5000"))
            assert c1.used_count == c2.used_count == 0

            claim_coupon(first, c1, order_id=1, user_id="u1", discount=d1)
            first.commit()

            with pytest.raises(HTTPException) as exc:
                claim_coupon(second, c2, order_id=2, user_id="u2", discount=d2)
            assert exc.value.detail == EXHAUSTED
            second.rollback()
        finally:
            first.close()
            second.close()

        db.expire_all()
        coupon = db.query(Coupon).filter(Coupon.code == "SAVE20").one()
        assert coupon.used_count == 1
        assert db.query(CouponUsage).count() == 1
