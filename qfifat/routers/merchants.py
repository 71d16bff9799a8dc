from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..earnings import earnings_summary, request_withdrawal
from ..merchants import latest_request, submit_request
from ..models import MerchantEarning, WithdrawalRequest
from ..schemas import (
    EarningOut,
    EarningsSummaryOut,
    MerchantRequestIn,
    MerchantRequestOut,
    WithdrawalIn,
    WithdrawalOut,
)
from ..security import CurrentUser, require_merchant, require_user

router = APIRouter(prefix="/merchant", tags=["merchant"])


@router.post("/requests", response_model=MerchantRequestOut)
def become_merchant(
    payload: MerchantRequestIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return submit_request(
        db,
        user,
        business_name=payload.business_name,
        phone=payload.phone,
        wilaya=payload.wilaya,
        business_description=payload.business_description,
    )


@router.get("/requests/latest", response_model=MerchantRequestOut)
def my_latest_request(user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    req = latest_request(db, user.id)
    if not req:
        raise HTTPException(status_code=404, detail="No request")
    return req


@router.get("/earnings", response_model=List[EarningOut])
def my_earnings(merchant: CurrentUser = Depends(require_merchant), db: Session = Depends(get_db)):
    return (
        db.query(MerchantEarning)
        .filter(MerchantEarning.merchant_id == merchant.id)
        .order_by(MerchantEarning.id.desc())
        .all()
    )


@router.get("/earnings/summary", response_model=EarningsSummaryOut)
def my_summary(merchant: CurrentUser = Depends(require_merchant), db: Session = Depends(get_db)):
    return earnings_summary(db, merchant.id)


@router.get("/withdrawals", response_model=List[WithdrawalOut])
def my_withdrawals(merchant: CurrentUser = Depends(require_merchant), db: Session = Depends(get_db)):
    return (
        db.query(WithdrawalRequest)
        .filter(WithdrawalRequest.merchant_id == merchant.id)
        .order_by(WithdrawalRequest.id.desc())
        .all()
    )


@router.post("/withdrawals", response_model=WithdrawalOut)
def withdraw(
    payload: WithdrawalIn,
    merchant: CurrentUser = Depends(require_merchant),
    db: Session = Depends(get_db),
):
    return request_withdrawal(db, merchant, payload.amount, payload.payment_method, payload.payment_details)
