from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import (
    ORDER_STATUSES,
    MerchantRequest,
    Order,
    Payment,
    Product,
    Review,
    UserRole,
    WithdrawalRequest,
)
from .money import to_money


def _day(dt: datetime) -> date:
    # SQLite returns naive UTC timestamps
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date()


def dashboard_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Back-office headline numbers. Revenue counts orders whose payment is
    verified; pending transfers and refunds are left out.
    """
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()

    by_status = {s: 0 for s in ORDER_STATUSES}
    for status, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
        by_status[status] = int(count)

    paid = (
        db.query(Order.total, Order.created_at)
        .join(Payment, Payment.order_id == Order.id)
        .filter(Payment.status == "verified")
        .all()
    )
    revenue = sum((to_money(total) for total, _ in paid), Decimal("0.00"))

    days = [today - timedelta(days=i) for i in range(13, -1, -1)]
    per_day = {d: Decimal("0.00") for d in days}
    for total, created_at in paid:
        if created_at is None:
            continue
        d = _day(created_at)
        if d in per_day:
            per_day[d] += to_money(total)

    last_week = days[7:]
    previous_week = days[:7]

    def pending(model) -> int:
        return db.query(func.count(model.id)).filter(model.status == "pending").scalar() or 0

    return {
        "total_orders": sum(by_status.values()),
        "orders_by_status": by_status,
        "total_revenue": revenue,
        "revenue_last_7_days": [{"day": d, "revenue": per_day[d]} for d in last_week],
        "last_7_days_total": sum((per_day[d] for d in last_week), Decimal("0.00")),
        "previous_7_days_total": sum((per_day[d] for d in previous_week), Decimal("0.00")),
        "customers": db.query(func.count(func.distinct(Order.customer_id))).scalar() or 0,
        "merchants": db.query(func.count(UserRole.id)).filter(UserRole.role == "merchant").scalar() or 0,
        "products": db.query(func.count(Product.id)).scalar() or 0,
        "active_products": db.query(func.count(Product.id)).filter(Product.is_active == True).scalar() or 0,  # noqa: E712
        "pending_payments": pending(Payment),
        "pending_withdrawals": pending(WithdrawalRequest),
        "pending_merchant_requests": pending(MerchantRequest),
        "pending_reviews": db.query(func.count(Review.id)).filter(Review.is_approved == False).scalar() or 0,  # noqa: E712
    }
