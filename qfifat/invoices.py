from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import config
from .models import Invoice, Order


def invoice_number_for(order: Order) -> str:
    token = order.order_number.split("-", 1)[-1]
    return f"{config.INVOICE_NUMBER_PREFIX}-{token}"


def issue_invoice(db: Session, order: Order) -> Invoice:
    """Issue the paid invoice for `order`, once. Does not commit."""
    existing = db.query(Invoice).filter(Invoice.order_id == order.id).first()
    if existing:
        return existing

    address = ", ".join(p for p in (order.shipping_address, order.shipping_city, order.shipping_wilaya) if p)
    invoice = Invoice(
        invoice_number=invoice_number_for(order),
        order_id=order.id,
        customer_name=order.shipping_name,
        customer_phone=order.shipping_phone,
        customer_email=order.customer_email,
        customer_address=address,
        subtotal=order.subtotal,
        discount=order.discount,
        shipping_cost=order.shipping_cost,
        total=order.total,
        status="paid",
        paid_at=datetime.now(timezone.utc),
    )
    db.add(invoice)
    return invoice


def search_invoices(db: Session, query: Optional[str] = None) -> list[Invoice]:
    q = db.query(Invoice).join(Order, Invoice.order_id == Order.id)
    if query:
        like = f"%{query.strip().lower()}%"
        q = q.filter(
            or_(
                Invoice.invoice_number.ilike(like),
                Invoice.customer_name.ilike(like),
                Order.order_number.ilike(like),
            )
        )
    return q.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).all()
