"""
Payment verification.

Bank transfers (`barid`) wait in `pending` until an admin looks at the
uploaded proof and approves or rejects. Card payments (`stripe`) are
verified at checkout. Either way, verification confirms the order, issues
its invoice and books merchant earnings in the same transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .earnings import record_earnings, void_earnings
from .events import publish
from .invoices import issue_invoice
from .models import Payment, PaymentProof
from .notifications import notify
from .orders import transition_order
from .security import CurrentUser
from .uploads import check_proof_url

logger = logging.getLogger(__name__)


def _load(db: Session, payment_id: int) -> Payment:
    payment = (
        db.query(Payment)
        .filter(Payment.id == payment_id)
        .with_for_update()
        .first()
    )
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("payment %s failed", what)
        raise HTTPException(status_code=500, detail=f"Failed to {what} payment")


def mark_verified(db: Session, payment: Payment, verifier_id: Optional[str]) -> None:
    """
    Verification cascade; the caller commits. The order must still be
    pending (or already confirmed by an earlier run).
    """
    order = payment.order
    if order.status == "pending":
        transition_order(order, "confirmed")
    elif order.status == "cancelled":
        raise HTTPException(status_code=409, detail="Order is cancelled")

    payment.status = "verified"
    payment.verified_by = verifier_id
    payment.verified_at = datetime.now(timezone.utc)

    issue_invoice(db, order)
    record_earnings(db, order)
    notify(
        db,
        order.customer_id,
        "تم تأكيد الدفع",
        f"تم تأكيد الدفع للطلب {order.order_number}",
        type="payment",
        data={"order_id": order.id, "payment_id": payment.id, "status": "verified"},
    )


def approve_payment(db: Session, payment_id: int, admin: CurrentUser) -> Payment:
    payment = _load(db, payment_id)

    if payment.status == "verified":
        return payment
    if payment.status != "pending":
        raise HTTPException(status_code=409, detail=f"Cannot approve a {payment.status} payment")
    if payment.method != "barid":
        raise HTTPException(status_code=400, detail="Only bank transfer payments need verification")
    if not payment.proofs:
        raise HTTPException(status_code=400, detail="Payment proof is required before verification")

    try:
        mark_verified(db, payment, admin.id)
    except HTTPException:
        db.rollback()
        raise
    _commit(db, "approve")

    logger.info("payment %s verified by %s", payment.id, admin.id)
    publish(
        "payment.verified",
        {"payment_id": payment.id, "order_id": payment.order_id, "amount": payment.amount},
        safe=True,
    )
    return payment


def reject_payment(db: Session, payment_id: int, admin: CurrentUser, reason: str) -> Payment:
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    payment = _load(db, payment_id)

    if payment.status == "failed":
        return payment
    if payment.status != "pending":
        raise HTTPException(status_code=409, detail=f"Cannot reject a {payment.status} payment")
    if payment.method != "barid":
        raise HTTPException(status_code=400, detail="Only bank transfer payments need verification")

    order = payment.order
    transition_order(order, "cancelled")
    payment.status = "failed"
    payment.admin_notes = reason
    payment.verified_by = admin.id
    payment.verified_at = datetime.now(timezone.utc)

    notify(
        db,
        order.customer_id,
        "تم رفض الدفع",
        f"تم رفض إثبات الدفع للطلب {order.order_number}: {reason}",
        type="payment",
        data={"order_id": order.id, "payment_id": payment.id, "status": "failed", "reason": reason},
    )
    _commit(db, "reject")

    logger.info("payment %s rejected by %s", payment.id, admin.id)
    publish(
        "payment.failed",
        {"payment_id": payment.id, "order_id": payment.order_id, "reason": reason},
        safe=True,
    )
    return payment


def refund_payment(db: Session, payment_id: int, admin: CurrentUser, notes: Optional[str] = None) -> Payment:
    """Return a verified payment. The order is cancelled unless delivered; unpaid earnings are voided."""
    payment = _load(db, payment_id)

    if payment.status == "refunded":
        return payment
    if payment.status != "verified":
        raise HTTPException(status_code=409, detail=f"Cannot refund a {payment.status} payment")

    order = payment.order
    if order.status != "delivered":
        transition_order(order, "cancelled")
    payment.status = "refunded"
    void_earnings(db, order)
    if notes and notes.strip():
        payment.admin_notes = notes.strip()

    notify(
        db,
        order.customer_id,
        "تم استرداد المبلغ",
        f"تم استرداد مبلغ الطلب {order.order_number}",
        type="payment",
        data={"order_id": order.id, "payment_id": payment.id, "status": "refunded"},
    )
    _commit(db, "refund")

    logger.info("payment %s refunded by %s", payment.id, admin.id)
    publish("payment.refunded", {"payment_id": payment.id, "order_id": payment.order_id}, safe=True)
    return payment


def add_proof(db: Session, payment_id: int, user: CurrentUser, file_url: str, file_name: str) -> PaymentProof:
    payment = _load(db, payment_id)
    if payment.order.customer_id != user.id and not user.is_admin:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.method != "barid":
        raise HTTPException(status_code=400, detail="Proofs only apply to bank transfer payments")
    if payment.status != "pending":
        raise HTTPException(status_code=409, detail=f"Cannot attach proof to a {payment.status} payment")
    file_url = check_proof_url(file_url)

    proof = PaymentProof(payment_id=payment.id, file_url=file_url, file_name=file_name, uploaded_by=user.id)
    db.add(proof)
    _commit(db, "attach proof to")
    db.refresh(proof)
    return proof


def list_payments(db: Session, status: Optional[str] = None) -> list[Payment]:
    q = db.query(Payment)
    if status:
        q = q.filter(Payment.status == status)
    return q.order_by(Payment.id.desc()).all()
