from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..checkout import place_order
from ..db import get_db
from ..models import Invoice
from ..orders import get_managed_order, get_visible_order, list_orders, update_order_status
from ..schemas import CheckoutIn, InvoiceOut, OrderOut, OrderStatusIn, TrackingIn, TrackingOut
from ..security import CurrentUser, require_user
from ..tracking import append_tracking_point, tracking_trail

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderOut)
def checkout(payload: CheckoutIn, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    order, _ = place_order(db, user, payload)
    return order


@router.get("", response_model=List[OrderOut])
def my_orders(
    status: Optional[str] = None,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return list_orders(db, user, status)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    return get_visible_order(db, order_id, user)


@router.patch("/{order_id}/status", response_model=OrderOut)
def set_status(
    order_id: int,
    payload: OrderStatusIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    order = get_managed_order(db, order_id, user)
    return update_order_status(db, order, payload.status, user)


@router.get("/{order_id}/tracking", response_model=List[TrackingOut])
def get_tracking(order_id: int, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    order = get_visible_order(db, order_id, user)
    return tracking_trail(db, order.id)


@router.post("/{order_id}/tracking", response_model=TrackingOut)
def add_tracking(
    order_id: int,
    payload: TrackingIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    order = get_managed_order(db, order_id, user)
    return append_tracking_point(
        db,
        order,
        payload.status,
        payload.location,
        user,
        latitude=payload.latitude,
        longitude=payload.longitude,
        description=payload.description,
        tracking_number=payload.tracking_number,
        estimated_delivery=payload.estimated_delivery,
    )


@router.get("/{order_id}/invoice", response_model=InvoiceOut)
def get_invoice(order_id: int, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    order = get_visible_order(db, order_id, user)
    invoice = db.query(Invoice).filter(Invoice.order_id == order.id).first()
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not issued yet")
    return invoice
