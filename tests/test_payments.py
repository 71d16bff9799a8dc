import pytest
from fastapi import HTTPException

from qfifat.checkout import place_order
from qfifat.models import Invoice, MerchantEarning, Notification, PaymentProof
from qfifat.payments import add_proof, approve_payment, refund_payment, reject_payment

from conftest import checkout_payload, make_product


@pytest.fixture
def pending_order(db, customer, merchant):
    p = make_product(db, price="4000", merchant_id=merchant.id)
    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)]))
    return order


def test_approve_cascades(db, admin, pending_order):
    payment = approve_payment(db, pending_order.payment.id, admin)

    assert payment.status == "verified"
    assert payment.verified_by == admin.id
    assert payment.verified_at is not None
    db.refresh(pending_order)
    assert pending_order.status == "confirmed"

    invoice = db.query(Invoice).filter(Invoice.order_id == pending_order.id).one()
    assert invoice.invoice_number == "INV-" + pending_order.order_number.split("-", 1)[1]
    assert invoice.total == pending_order.total
    assert db.query(MerchantEarning).filter(MerchantEarning.order_id == pending_order.id).count() == 1


def test_approve_twice_is_noop(db, admin, pending_order):
    approve_payment(db, pending_order.payment.id, admin)
    approve_payment(db, pending_order.payment.id, admin)

    assert db.query(Invoice).count() == 1
    assert db.query(MerchantEarning).count() == 1


def test_approve_requires_proof(db, admin, pending_order):
    db.query(PaymentProof).delete()
    db.commit()
    db.expire_all()

    with pytest.raises(HTTPException) as exc:
        approve_payment(db, pending_order.payment.id, admin)
    assert exc.value.status_code == 400


def test_reject_cascades(db, admin, customer, pending_order):
    payment = reject_payment(db, pending_order.payment.id, admin, "blurry proof")

    assert payment.status == "failed"
    assert payment.admin_notes == "blurry proof"
    assert payment.verified_by == admin.id
    db.refresh(pending_order)
    assert pending_order.status == "cancelled"

    note = (
        db.query(Notification)
        .filter(Notification.user_id == customer.id, Notification.type == "payment")
        .one()
    )
    assert "blurry proof" in note.message
    assert db.query(MerchantEarning).count() == 0


def test_reject_requires_reason(db, admin, pending_order):
    with pytest.raises(HTTPException) as exc:
        reject_payment(db, pending_order.payment.id, admin, "   ")
    assert exc.value.status_code == 400


def test_reject_twice_is_noop(db, admin, pending_order):
    reject_payment(db, pending_order.payment.id, admin, "blurry proof")
    payment = reject_payment(db, pending_order.payment.id, admin, "another reason")
    assert payment.admin_notes == "blurry proof"


def test_no_way_back_from_terminal_states(db, admin, pending_order):
    reject_payment(db, pending_order.payment.id, admin, "blurry proof")
    with pytest.raises(HTTPException) as exc:
        approve_payment(db, pending_order.payment.id, admin)
    assert exc.value.status_code == 409


def test_cannot_reject_verified(db, admin, pending_order):
    approve_payment(db, pending_order.payment.id, admin)
    with pytest.raises(HTTPException) as exc:
        reject_payment(db, pending_order.payment.id, admin, "late")
    assert exc.value.status_code == 409


def test_refund_only_from_verified(db, admin, pending_order):
    with pytest.raises(HTTPException) as exc:
        refund_payment(db, pending_order.payment.id, admin)
    assert exc.value.status_code == 409

    approve_payment(db, pending_order.payment.id, admin)
    payment = refund_payment(db, pending_order.payment.id, admin, "returned")
    assert payment.status == "refunded"
    db.refresh(pending_order)
    assert pending_order.status == "cancelled"


def test_card_payments_skip_review(db, admin, customer):
    p = make_product(db)
    order, _ = place_order(db, customer, checkout_payload([(p.id, 1)], method="stripe"))
    # Already verified: approving again is a no-op
    assert approve_payment(db, order.payment.id, admin).status == "verified"


def test_add_extra_proof(db, customer, pending_order):
    proof = add_proof(db, pending_order.payment.id, customer, "/static/proof_2.pdf", "recu-2.pdf")
    assert proof.payment_id == pending_order.payment.id
    db.expire_all()
    assert len(pending_order.payment.proofs) == 2


def test_add_proof_foreign_order(db, pending_order):
    from qfifat.security import CurrentUser

    stranger = CurrentUser(id="someone-else")
    with pytest.raises(HTTPException) as exc:
        add_proof(db, pending_order.payment.id, stranger, "/static/x.jpg", "x.jpg")
    assert exc.value.status_code == 404


def test_extra_proof_must_be_uploaded_file(db, customer, pending_order):
    with pytest.raises(HTTPException) as exc:
        add_proof(db, pending_order.payment.id, customer, "http://evil.example/malware.exe", "malware.exe")
    assert exc.value.status_code == 400
    db.rollback()
    assert db.query(PaymentProof).count() == 1


def test_refund_voids_merchant_earnings(db, admin, pending_order):
    approve_payment(db, pending_order.payment.id, admin)
    refund_payment(db, pending_order.payment.id, admin)
    db.expire_all()
    statuses = [e.status for e in db.query(MerchantEarning).filter(MerchantEarning.order_id == pending_order.id)]
    assert statuses == ["cancelled"]
