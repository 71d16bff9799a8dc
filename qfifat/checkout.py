import logging
import secrets
import time
from decimal import Decimal
from typing import Dict, Tuple

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import config
from .coupons import claim_coupon, validate_and_price
from .events import publish
from .models import Order, OrderItem, Payment, PaymentProof, Product
from .money import to_money
from .notifications import notify
from .payments import mark_verified
from .schemas import CheckoutIn
from .security import CurrentUser
from .uploads import check_proof_url

logger = logging.getLogger(__name__)


def new_order_number() -> str:
    # Millisecond timestamp plus a short random tail so concurrent checkouts don't collide
    return f"{config.ORDER_NUMBER_PREFIX}-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


def _merge_lines(payload: CheckoutIn) -> Dict[int, int]:
    if not payload.items:
        raise HTTPException(status_code=400, detail="Empty cart")

    merged: Dict[int, int] = {}
    for it in payload.items:
        pid = int(it.product_id)
        qty = int(it.quantity)
        if qty <= 0:
            raise HTTPException(status_code=400, detail="Invalid quantity")
        merged[pid] = merged.get(pid, 0) + qty
    return merged


def _check_destination(payload: CheckoutIn) -> None:
    s = payload.shipping
    missing = [
        name
        for name, value in (("name", s.name), ("phone", s.phone), ("address", s.address), ("wilaya", s.wilaya))
        if not (value or "").strip()
    ]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing shipping fields: {', '.join(missing)}")


def _load_products(db: Session, product_ids) -> Dict[int, Product]:
    rows = db.query(Product).filter(Product.id.in_(list(product_ids))).all()
    products = {p.id: p for p in rows}
    for pid in product_ids:
        p = products.get(pid)
        if p is None or not p.is_active:
            raise HTTPException(status_code=400, detail=f"Product {pid} not available")
    return products


def _existing(db: Session, customer_id: str, key: str) -> Order | None:
    return (
        db.query(Order)
        .filter(Order.customer_id == customer_id, Order.idempotency_key == key)
        .first()
    )


def place_order(db: Session, customer: CurrentUser, payload: CheckoutIn) -> Tuple[Order, bool]:
    """
    Turn a cart into an order, its line items and its payment in one
    transaction. Returns (order, created); a resubmission with a known
    idempotency key returns the original order and created=False.
    """
    key = (payload.idempotency_key or "").strip() or None
    if key:
        existing = _existing(db, customer.id, key)
        if existing:
            return existing, False

    merged = _merge_lines(payload)
    _check_destination(payload)

    method = payload.payment_method
    if method == "barid" and payload.proof is None:
        raise HTTPException(status_code=400, detail="Payment proof is required for bank transfer")
    proof_url = check_proof_url(payload.proof.file_url) if method == "barid" else None

    # Prices and snapshots come from the catalogue at submission time
    products = _load_products(db, merged.keys())

    lines = []
    subtotal = Decimal("0.00")
    for pid, qty in merged.items():
        p = products[pid]
        unit_price = to_money(p.price)
        line_total = to_money(unit_price * qty)
        subtotal += line_total
        lines.append((p, qty, unit_price, line_total))

    coupon = None
    discount = Decimal("0.00")
    if payload.coupon_code and payload.coupon_code.strip():
        coupon, discount = validate_and_price(db, payload.coupon_code, subtotal)

    shipping_cost = to_money(config.SHIPPING_COST)
    total = subtotal - discount + shipping_cost

    s = payload.shipping
    try:
        order = Order(
            order_number=new_order_number(),
            customer_id=customer.id,
            customer_email=customer.email,
            idempotency_key=key,
            subtotal=subtotal,
            discount=discount,
            coupon_code=coupon.code if coupon else None,
            shipping_cost=shipping_cost,
            total=total,
            shipping_name=s.name.strip(),
            shipping_phone=s.phone.strip(),
            shipping_address=s.address.strip(),
            shipping_city=(s.city or "").strip(),
            shipping_wilaya=s.wilaya.strip(),
            notes=payload.notes,
            status="pending",
        )
        for p, qty, unit_price, line_total in lines:
            order.items.append(
                OrderItem(
                    product_id=p.id,
                    merchant_id=p.merchant_id,
                    product_name=p.name,
                    product_image=p.image_url,
                    quantity=qty,
                    unit_price=unit_price,
                    total_price=line_total,
                )
            )
        db.add(order)
        db.flush()  # order.id, item ids

        payment = Payment(order=order, method=method, amount=total, status="pending")
        db.add(payment)
        db.flush()

        if method == "barid":
            db.add(
                PaymentProof(
                    payment=payment,
                    file_url=proof_url,
                    file_name=payload.proof.file_name,
                    uploaded_by=customer.id,
                )
            )

        if coupon is not None:
            claim_coupon(db, coupon, order.id, customer.id, discount)

        notify(
            db,
            customer.id,
            "تم إنشاء الطلب بنجاح",
            f"رقم الطلب: {order.order_number}",
            type="order",
            data={"order_id": order.id, "status": "pending"},
        )

        if method == "stripe":
            mark_verified(db, payment, None)

        db.commit()

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError:
        db.rollback()
        # Lost a race with an identical resubmission
        if key:
            existing = _existing(db, customer.id, key)
            if existing:
                return existing, False
        logger.exception("checkout integrity error customer=%s", customer.id)
        raise HTTPException(status_code=500, detail="Failed to create order")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("checkout failed customer=%s", customer.id)
        raise HTTPException(status_code=500, detail="Failed to create order")

    db.refresh(order)
    logger.info(
        "order %s placed customer=%s method=%s total=%s",
        order.order_number, customer.id, method, total,
    )
    publish(
        "order.created",
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_id": customer.id,
            "total": total,
            "payment_method": method,
        },
        safe=True,
    )
    return order, True
