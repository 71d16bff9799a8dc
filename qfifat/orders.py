import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .events import publish
from .models import Order, OrderItem
from .notifications import notify
from .security import CurrentUser

logger = logging.getLogger(__name__)

# Forward-only fulfilment chain; cancelled sits outside it
FLOW = ("pending", "confirmed", "processing", "shipped", "delivered")
TERMINAL = ("delivered", "cancelled")

STATUS_LABELS = {
    "pending": "قيد الانتظار",
    "confirmed": "تم التأكيد",
    "processing": "جاري التجهيز",
    "shipped": "تم الشحن",
    "delivered": "تم التسليم",
    "cancelled": "ملغي",
}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    if current in TERMINAL:
        return False
    if target == "cancelled":
        return True
    if target not in FLOW:
        return False
    return FLOW.index(target) > FLOW.index(current)


def transition_order(order: Order, target: str) -> bool:
    """
    Move `order` to `target`. Returns False when already there, raises 409
    for a move the lifecycle forbids. Does not commit.
    """
    if target not in FLOW and target != "cancelled":
        raise HTTPException(status_code=400, detail=f"Unknown order status {target}")
    if not can_transition(order.status, target):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move order from {order.status} to {target}",
        )
    if order.status == target:
        return False
    order.status = target
    return True


def merchant_owns_items(db: Session, order_id: int, merchant_id: str) -> bool:
    return (
        db.query(OrderItem.id)
        .filter(OrderItem.order_id == order_id, OrderItem.merchant_id == merchant_id)
        .first()
        is not None
    )


def _has_other_sellers(db: Session, order_id: int, merchant_id: str) -> bool:
    return (
        db.query(OrderItem.id)
        .filter(
            OrderItem.order_id == order_id,
            or_(OrderItem.merchant_id.is_(None), OrderItem.merchant_id != merchant_id),
        )
        .first()
        is not None
    )


def check_manual_move(db: Session, order: Order, target: str, actor: CurrentUser) -> None:
    """
    Extra rules for status changes made by hand (status edits, tracking
    points). Payment verification is the only way out of pending besides
    cancelling, and a paid order is cancelled through a refund.
    """
    if target == order.status:
        return
    if target == "cancelled":
        if order.payment is not None and order.payment.status == "verified":
            raise HTTPException(status_code=409, detail="Order is paid; refund the payment instead")
        if not actor.is_admin and _has_other_sellers(db, order.id, actor.id):
            raise HTTPException(status_code=403, detail="Only admins can cancel orders shared with other sellers")
        return
    if order.status == "pending":
        raise HTTPException(status_code=409, detail="Order is awaiting payment verification")


def get_visible_order(db: Session, order_id: int, user: CurrentUser) -> Order:
    """Admins see all, merchants see orders holding their items, customers their own."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Not found")
    if user.is_admin or order.customer_id == user.id:
        return order
    if user.is_merchant and merchant_owns_items(db, order.id, user.id):
        return order
    raise HTTPException(status_code=404, detail="Not found")


def get_managed_order(db: Session, order_id: int, user: CurrentUser) -> Order:
    """Orders the caller may change: admins any, merchants those holding their items."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Not found")
    if user.is_admin:
        return order
    if user.is_merchant and merchant_owns_items(db, order.id, user.id):
        return order
    raise HTTPException(status_code=403, detail="Not allowed to manage this order")


def update_order_status(db: Session, order: Order, target: str, actor: CurrentUser) -> Order:
    previous = order.status
    if target not in FLOW and target != "cancelled":
        raise HTTPException(status_code=400, detail=f"Unknown order status {target}")
    check_manual_move(db, order, target, actor)
    changed = transition_order(order, target)
    if not changed:
        return order

    payment = order.payment
    if target == "cancelled" and payment is not None and payment.status == "pending":
        payment.status = "failed"
        payment.admin_notes = payment.admin_notes or "Order cancelled"

    notify(
        db,
        order.customer_id,
        "تحديث حالة الطلب",
        f"طلبك {order.order_number}: {STATUS_LABELS[target]}",
        type="order",
        data={"order_id": order.id, "status": target},
    )

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("order %s status update failed", order.id)
        raise HTTPException(status_code=500, detail="Failed to update order")

    logger.info("order %s %s -> %s by %s", order.order_number, previous, target, actor.id)
    publish(
        "order.status_changed",
        {"order_id": order.id, "order_number": order.order_number, "status": target},
        safe=True,
    )
    return order


def list_orders(db: Session, user: CurrentUser, status: Optional[str] = None) -> list[Order]:
    q = db.query(Order)
    if user.is_admin:
        pass
    elif user.is_merchant:
        q = q.filter(or_(Order.items.any(OrderItem.merchant_id == user.id), Order.customer_id == user.id))
    else:
        q = q.filter(Order.customer_id == user.id)
    if status:
        q = q.filter(Order.status == status)
    return q.order_by(Order.id.desc()).all()
