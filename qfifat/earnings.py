"""
Merchant commission ledger and withdrawals.

Available balance is always recomputed from rows:

    sum(net_amount - settled_amount) over pending earnings
  - sum(amount) over pending/approved withdrawal requests

Open requests are netted out until they complete or are rejected, so the
same earnings can't be claimed twice while an admin is still looking at
the first request. Completing a request settles earnings oldest-first and
writes one WithdrawalAllocation per earning touched.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .events import publish
from .models import MerchantEarning, Order, UserRole, WithdrawalAllocation, WithdrawalRequest
from .money import round_units, to_money
from .notifications import notify
from .security import CurrentUser

logger = logging.getLogger(__name__)

OPEN_WITHDRAWAL_STATUSES = ("pending", "approved")

BELOW_MINIMUM = "below minimum"
EXCEEDS_BALANCE = "exceeds balance"


def split_commission(amount: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """(commission, net) with commission rounded to whole units; they always add back up."""
    amount = to_money(amount)
    commission = round_units(amount * Decimal(rate))
    return commission, amount - commission


def record_earnings(db: Session, order: Order, rate: Optional[Decimal] = None) -> list[MerchantEarning]:
    """
    One pending earning per merchant line item of `order`. Items that already
    have an earning are skipped. Does not commit.
    """
    rate = config.COMMISSION_RATE if rate is None else Decimal(rate)

    item_ids = [i.id for i in order.items if i.merchant_id]
    if not item_ids:
        return []

    existing = {
        row.order_item_id
        for row in db.query(MerchantEarning.order_item_id)
        .filter(MerchantEarning.order_item_id.in_(item_ids))
        .all()
    }

    created = []
    for item in order.items:
        if not item.merchant_id or item.id in existing:
            continue
        commission, net = split_commission(item.total_price, rate)
        earning = MerchantEarning(
            merchant_id=item.merchant_id,
            order_id=order.id,
            order_item_id=item.id,
            amount=to_money(item.total_price),
            commission_rate=rate,
            commission_amount=commission,
            net_amount=net,
            settled_amount=Decimal("0.00"),
            status="pending",
        )
        db.add(earning)
        created.append(earning)

    if created:
        logger.info("order %s: %s earnings recorded", order.order_number, len(created))
    return created


def void_earnings(db: Session, order: Order) -> int:
    """
    Cancel the unpaid earnings of a refunded order so they leave the
    merchant's balance. Amounts already settled by a completed withdrawal
    stay on the row. Does not commit.
    """
    rows = (
        db.query(MerchantEarning)
        .filter(MerchantEarning.order_id == order.id, MerchantEarning.status == "pending")
        .with_for_update()
        .all()
    )
    for e in rows:
        e.status = "cancelled"
    if rows:
        logger.info("order %s: %s earnings voided", order.order_number, len(rows))
    return len(rows)


def unsettled_earnings(db: Session, merchant_id: str) -> Decimal:
    rows = (
        db.query(MerchantEarning.net_amount, MerchantEarning.settled_amount)
        .filter(MerchantEarning.merchant_id == merchant_id, MerchantEarning.status == "pending")
        .all()
    )
    return sum((to_money(net) - to_money(settled) for net, settled in rows), Decimal("0.00"))


def open_withdrawals(db: Session, merchant_id: str) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(WithdrawalRequest.amount), 0))
        .filter(
            WithdrawalRequest.merchant_id == merchant_id,
            WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
        )
        .scalar()
    )
    return to_money(total)


def available_balance(db: Session, merchant_id: str) -> Decimal:
    return unsettled_earnings(db, merchant_id) - open_withdrawals(db, merchant_id)


def earnings_summary(db: Session, merchant_id: str) -> Dict[str, Decimal]:
    rows = db.query(MerchantEarning).filter(MerchantEarning.merchant_id == merchant_id).all()
    live = [e for e in rows if e.status != "cancelled"]
    # A voided earning only counts for what was paid out before the refund
    total = sum((to_money(e.net_amount) for e in live), Decimal("0.00")) + sum(
        (to_money(e.settled_amount) for e in rows if e.status == "cancelled"), Decimal("0.00")
    )
    paid = sum((to_money(e.settled_amount) for e in rows), Decimal("0.00"))
    commission = sum((to_money(e.commission_amount) for e in live), Decimal("0.00"))
    pending_withdrawals = open_withdrawals(db, merchant_id)
    return {
        "total_earnings": total,
        "pending_earnings": total - paid,
        "paid_earnings": paid,
        "total_commission": commission,
        "pending_withdrawals": pending_withdrawals,
        "available_balance": total - paid - pending_withdrawals,
        "minimum_withdrawal": config.MIN_WITHDRAWAL,
    }


def _lock_merchant(db: Session, merchant_id: str) -> None:
    # Serializes balance checks per merchant (row lock on Postgres)
    row = (
        db.query(UserRole)
        .filter(UserRole.user_id == merchant_id)
        .with_for_update()
        .first()
    )
    if row is None or row.role != "merchant":
        raise HTTPException(status_code=403, detail="Merchant only")


def request_withdrawal(
    db: Session,
    merchant: CurrentUser,
    amount: Decimal,
    payment_method: str,
    payment_details: Dict[str, Any],
) -> WithdrawalRequest:
    amount = to_money(amount)

    if amount < config.MIN_WITHDRAWAL:
        raise HTTPException(status_code=400, detail=BELOW_MINIMUM)

    _lock_merchant(db, merchant.id)

    balance = available_balance(db, merchant.id)
    if amount > balance:
        db.rollback()
        raise HTTPException(status_code=400, detail=EXCEEDS_BALANCE)

    req = WithdrawalRequest(
        merchant_id=merchant.id,
        amount=amount,
        payment_method=payment_method,
        payment_details=payment_details or {},
        status="pending",
    )
    db.add(req)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("withdrawal request failed merchant=%s", merchant.id)
        raise HTTPException(status_code=500, detail="Failed to create withdrawal request")

    db.refresh(req)
    logger.info("withdrawal %s requested merchant=%s amount=%s", req.id, merchant.id, amount)
    publish("withdrawal.requested", {"withdrawal_id": req.id, "merchant_id": merchant.id, "amount": amount}, safe=True)
    return req


def _settle(db: Session, req: WithdrawalRequest) -> list[WithdrawalAllocation]:
    remaining = to_money(req.amount)
    earnings = (
        db.query(MerchantEarning)
        .filter(MerchantEarning.merchant_id == req.merchant_id, MerchantEarning.status == "pending")
        .order_by(MerchantEarning.created_at, MerchantEarning.id)
        .with_for_update()
        .all()
    )

    allocations = []
    for e in earnings:
        if remaining <= 0:
            break
        open_amount = to_money(e.net_amount) - to_money(e.settled_amount)
        if open_amount <= 0:
            continue
        take = min(open_amount, remaining)
        e.settled_amount = to_money(e.settled_amount) + take
        if e.settled_amount >= to_money(e.net_amount):
            e.status = "paid"
        remaining -= take
        alloc = WithdrawalAllocation(withdrawal_id=req.id, earning_id=e.id, amount=take)
        db.add(alloc)
        allocations.append(alloc)

    if remaining > 0:
        raise HTTPException(status_code=409, detail="Not enough pending earnings to settle withdrawal")
    return allocations


# action -> (allowed from, resulting status)
WITHDRAWAL_ACTIONS = {
    "approve": (("pending",), "approved"),
    "complete": (("approved",), "completed"),
    "reject": (("pending",), "rejected"),
}


def process_withdrawal(
    db: Session,
    withdrawal_id: int,
    action: str,
    admin: CurrentUser,
    notes: Optional[str] = None,
) -> WithdrawalRequest:
    if action not in WITHDRAWAL_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action {action}")
    allowed_from, target = WITHDRAWAL_ACTIONS[action]

    req = (
        db.query(WithdrawalRequest)
        .filter(WithdrawalRequest.id == withdrawal_id)
        .with_for_update()
        .first()
    )
    if not req:
        raise HTTPException(status_code=404, detail="Withdrawal request not found")

    if req.status == target:
        return req
    if req.status not in allowed_from:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot {action} a withdrawal in status {req.status}",
        )

    notes = (notes or "").strip() or None
    if action == "reject" and not notes:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    try:
        if action == "complete":
            _settle(db, req)

        req.status = target
        req.processed_by = admin.id
        req.processed_at = datetime.now(timezone.utc)
        if notes:
            req.admin_notes = notes

        notify(
            db,
            req.merchant_id,
            "طلب السحب",
            f"طلب سحب {req.amount} دج: {target}",
            type="withdrawal",
            data={"withdrawal_id": req.id, "status": target},
        )
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("withdrawal %s %s failed", withdrawal_id, action)
        raise HTTPException(status_code=500, detail="Failed to update withdrawal request")

    db.refresh(req)
    logger.info("withdrawal %s -> %s by %s", req.id, target, admin.id)
    publish(f"withdrawal.{target}", {"withdrawal_id": req.id, "merchant_id": req.merchant_id}, safe=True)
    return req
