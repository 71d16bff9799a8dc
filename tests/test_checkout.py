from decimal import Decimal

import pytest
from fastapi import HTTPException

from qfifat.checkout import new_order_number, place_order
from qfifat.models import CouponUsage, Invoice, MerchantEarning, Notification, Order

from conftest import checkout_payload, make_coupon, make_product


def test_order_number_format():
    number = new_order_number()
    prefix, millis, tail = number.split("-")
    assert prefix == "QF"
    assert millis.isdigit()
    assert len(tail) == 4


def test_bank_transfer_order(db, customer):
    basket = make_product(db, price="2500")
    scarf = make_product(db, price="1200", name="شال")

    order, created = place_order(db, customer, checkout_payload([(basket.id, 2), (scarf.id, 1)]))

    assert created
    assert order.status == "pending"
    assert order.subtotal == Decimal("6200.00")
    assert order.shipping_cost == Decimal("500.00")
    assert order.total == order.subtotal - order.discount + order.shipping_cost
    assert sum(i.total_price for i in order.items) == order.subtotal

    payment = order.payment
    assert payment.method == "barid"
    assert payment.status == "pending"
    assert payment.amount == order.total
    assert len(payment.proofs) == 1
    assert payment.proofs[0].uploaded_by == customer.id

    # Nothing is booked until an admin verifies the transfer
    assert db.query(Invoice).count() == 0
    assert db.query(Notification).filter(Notification.user_id == customer.id).count() == 1


def test_duplicate_lines_merge(db, customer):
    p = make_product(db, price="1000")
    order, _ = place_order(db, customer, checkout_payload([(p.id, 1), (p.id, 2)]))
    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert order.subtotal == Decimal("3000.00")


def test_card_payment_is_verified_immediately(db, customer, merchant):
    p = make_product(db, price="3000", merchant_id=merchant.id)

    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)], method="stripe"))

    assert order.payment.status == "verified"
    assert order.status == "confirmed"
    assert db.query(Invoice).filter(Invoice.order_id == order.id).count() == 1
    earning = db.query(MerchantEarning).filter(MerchantEarning.order_id == order.id).one()
    assert earning.amount == Decimal("3000.00")
    assert earning.commission_amount + earning.net_amount == earning.amount


def test_bank_transfer_requires_proof(db, customer):
    p = make_product(db)
    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, checkout_payload([(p.id, 1)], proof=False))
    assert exc.value.status_code == 400
    assert db.query(Order).count() == 0


def test_empty_cart(db, customer):
    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, checkout_payload([]))
    assert exc.value.detail == "Empty cart"


def test_zero_quantity(db, customer):
    p = make_product(db)
    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, checkout_payload([(p.id, 0)]))
    assert exc.value.detail == "Invalid quantity"


def test_blank_destination_field(db, customer):
    p = make_product(db)
    payload = checkout_payload([(p.id, 1)])
    payload.shipping.address = "   "
    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, payload)
    assert "address" in exc.value.detail


def test_inactive_product_rejected(db, customer):
    p = make_product(db, active=False)
    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, checkout_payload([(p.id, 1)]))
    assert exc.value.detail == f"Product {p.id} not available"


def test_line_items_are_snapshots(db, customer):
    p = make_product(db, price="2500", name="طبق حلفاء")
    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)]))

    p.name = "طبق حلفاء كبير"
    p.price = Decimal("4000")
    db.commit()

    db.expire_all()
    item = db.get(Order, order.id).items[0]
    assert item.product_name == "طبق حلفاء"
    assert item.unit_price == Decimal("2500.00")


def test_coupon_applied_and_counted(db, customer):
    p = make_product(db, price="5000")
    coupon = make_coupon(db)

    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)], coupon_code="save20"))

    assert order.discount == Decimal("1000.00")
    assert order.coupon_code == "SAVE20"
    assert order.total == Decimal("4500.00")  # 5000 - 1000 + 500
    db.refresh(coupon)
    assert coupon.used_count == 1
    usage = db.query(CouponUsage).filter(CouponUsage.order_id == order.id).one()
    assert usage.discount_amount == Decimal("1000.00")


def test_fixed_coupon_clamped(db, customer):
    p = make_product(db, price="300")
    make_coupon(db, code="MINUS500", discount_type="fixed", value="500", min_order="0")

    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)], coupon_code="MINUS500"))

    assert order.discount == Decimal("300.00")
    assert order.total == order.shipping_cost


def test_resubmission_is_idempotent(db, customer):
    p = make_product(db, price="5000")
    coupon = make_coupon(db, max_uses=5)
    payload = checkout_payload([(p.id, 1)], coupon_code="SAVE20", key="cart-42")

    first, created_first = place_order(db, customer, payload)
    second, created_second = place_order(db, customer, payload)

    assert created_first and not created_second
    assert first.id == second.id
    assert db.query(Order).count() == 1
    db.refresh(coupon)
    assert coupon.used_count == 1


def test_exhausted_coupon_blocks_whole_order(db, customer):
    p = make_product(db, price="5000")
    make_coupon(db, max_uses=1, used_count=1)

    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, checkout_payload([(p.id, 1)], coupon_code="SAVE20"))

    assert exc.value.detail == "exhausted"
    assert db.query(Order).count() == 0


@pytest.mark.parametrize(
    "file_url",
    [
        "http://evil.example/malware.exe",
        "/static/proof.exe",
        "/static/../secrets.pdf",
        "/static/",
        "https://cdn.example/recu.jpg",
    ],
)
def test_proof_must_be_an_uploaded_image_or_pdf(db, customer, file_url):
    p = make_product(db)
    base = checkout_payload([(p.id, 1)], proof=False)
    payload = base.model_validate({**base.model_dump(), "proof": {"file_url": file_url, "file_name": "recu"}})

    with pytest.raises(HTTPException) as exc:
        place_order(db, customer, payload)
    assert exc.value.status_code == 400
    assert db.query(Order).count() == 0


def test_pdf_proof_accepted(db, customer):
    p = make_product(db)
    base = checkout_payload([(p.id, 1)], proof=False)
    payload = base.model_validate(
        {**base.model_dump(), "proof": {"file_url": "/static/proof_1a2b.PDF", "file_name": "recu.pdf"}}
    )
    order, created = place_order(db, customer, payload)
    assert created
    assert order.payment.proofs[0].file_url == "/static/proof_1a2b.PDF"
