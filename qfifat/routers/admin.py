import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import commit_or_500, get_db
from ..earnings import process_withdrawal
from ..invoices import search_invoices
from ..merchants import review_request, set_role
from ..models import Coupon, MerchantRequest, UserRole, WithdrawalRequest
from ..payments import approve_payment, list_payments, refund_payment, reject_payment
from ..reviews import delete_review, list_reviews, moderate_review
from ..schemas import (
    CouponCreate,
    CouponOut,
    CouponUpdate,
    InvoiceOut,
    MerchantRequestOut,
    MerchantReviewIn,
    PaymentOut,
    PaymentRefundIn,
    PaymentRejectIn,
    ReviewModerateIn,
    ReviewOut,
    RoleIn,
    RoleOut,
    StatsOut,
    WithdrawalActionIn,
    WithdrawalOut,
)
from ..security import CurrentUser, require_admin
from ..stats import dashboard_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# --- payments ---

@router.get("/payments", response_model=List[PaymentOut])
def payments(status: Optional[str] = None, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return list_payments(db, status)


@router.post("/payments/{payment_id}/approve", response_model=PaymentOut)
def approve(payment_id: int, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return approve_payment(db, payment_id, admin)


@router.post("/payments/{payment_id}/reject", response_model=PaymentOut)
def reject(
    payment_id: int,
    payload: PaymentRejectIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return reject_payment(db, payment_id, admin, payload.reason)


@router.post("/payments/{payment_id}/refund", response_model=PaymentOut)
def refund(
    payment_id: int,
    payload: PaymentRefundIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return refund_payment(db, payment_id, admin, payload.notes)


# --- coupons ---

@router.get("/coupons", response_model=List[CouponOut])
def coupons(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(Coupon).order_by(Coupon.id.desc()).all()


@router.post("/coupons", response_model=CouponOut)
def create_coupon(payload: CouponCreate, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    c = Coupon(**payload.model_dump(), used_count=0)
    db.add(c)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Coupon code already exists")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("coupon create failed code=%s", payload.code)
        raise HTTPException(status_code=500, detail="Failed to create coupon")
    db.refresh(c)
    return c


@router.patch("/coupons/{coupon_id}", response_model=CouponOut)
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    c = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Not found")
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(c, field, value)
    commit_or_500(db, "update coupon")
    db.refresh(c)
    return c


@router.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: int, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    c = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Not found")
    if c.used_count > 0:
        # Usage rows reference it; retire instead
        c.is_active = False
        commit_or_500(db, "deactivate coupon")
        return {"ok": True, "deactivated": True}
    db.delete(c)
    commit_or_500(db, "delete coupon")
    return {"ok": True, "deactivated": False}


# --- withdrawals ---

@router.get("/withdrawals", response_model=List[WithdrawalOut])
def withdrawals(status: Optional[str] = None, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    q = db.query(WithdrawalRequest)
    if status:
        q = q.filter(WithdrawalRequest.status == status)
    return q.order_by(WithdrawalRequest.id.desc()).all()


@router.post("/withdrawals/{withdrawal_id}", response_model=WithdrawalOut)
def handle_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalActionIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return process_withdrawal(db, withdrawal_id, payload.action, admin, payload.notes)


# --- merchant requests ---

@router.get("/merchant-requests", response_model=List[MerchantRequestOut])
def merchant_requests(
    status: Optional[str] = None,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    q = db.query(MerchantRequest)
    if status:
        q = q.filter(MerchantRequest.status == status)
    return q.order_by(MerchantRequest.id.desc()).all()


@router.post("/merchant-requests/{request_id}/review", response_model=MerchantRequestOut)
def review(
    request_id: int,
    payload: MerchantReviewIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return review_request(db, request_id, payload.approve, admin, payload.notes)


# --- invoices ---

@router.get("/invoices", response_model=List[InvoiceOut])
def invoices(q: Optional[str] = None, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return search_invoices(db, q)


# --- users ---

@router.get("/users", response_model=List[RoleOut])
def users(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(UserRole).order_by(UserRole.id.desc()).all()


@router.put("/users/{user_id}/role", response_model=RoleOut)
def change_role(
    user_id: str,
    payload: RoleIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if user_id == admin.id and payload.role != "admin":
        raise HTTPException(status_code=400, detail="Admins cannot demote themselves")
    row = set_role(db, user_id, payload.role)
    commit_or_500(db, "change role")
    db.refresh(row)
    return row


# --- reviews ---

@router.get("/reviews", response_model=List[ReviewOut])
def reviews(approved: Optional[bool] = None, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return list_reviews(db, approved)


@router.post("/reviews/{review_id}/moderate", response_model=ReviewOut)
def moderate(
    review_id: int,
    payload: ReviewModerateIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return moderate_review(db, review_id, payload.approved, admin)


@router.delete("/reviews/{review_id}")
def remove_review(review_id: int, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    delete_review(db, review_id, admin)
    return {"ok": True}


# --- dashboard ---

@router.get("/stats", response_model=StatsOut)
def stats(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return dashboard_stats(db)
