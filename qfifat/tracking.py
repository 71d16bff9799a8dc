"""
Shipment tracking trail.

Points are append-only. Each new point is mirrored onto the order
(status, current location, coordinates) so the order row alone answers
"where is it now"; the trail is only read for the history view.
"""
import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .events import publish
from .models import Order, ShippingTracking
from .notifications import notify
from .orders import FLOW, STATUS_LABELS, check_manual_move, transition_order
from .security import CurrentUser

logger = logging.getLogger(__name__)

# Wilaya seats the dispatch team picks from; used when no coordinates are sent
KNOWN_LOCATIONS = {
    "الجزائر العاصمة": (36.7538, 3.0588),
    "وهران": (35.6969, -0.6331),
    "قسنطينة": (36.365, 6.6147),
    "عنابة": (36.9, 7.7667),
    "سطيف": (36.19, 5.4117),
    "باتنة": (35.555, 6.1744),
    "تلمسان": (34.8828, -1.3167),
    "بجاية": (36.7508, 5.0567),
    "البليدة": (36.47, 2.8283),
    "تيزي وزو": (36.7117, 4.0456),
}


def append_tracking_point(
    db: Session,
    order: Order,
    status: str,
    location: str,
    actor: CurrentUser,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    description: Optional[str] = None,
    tracking_number: Optional[str] = None,
    estimated_delivery: Optional[str] = None,
) -> ShippingTracking:
    location = (location or "").strip()
    if not status or not location:
        raise HTTPException(status_code=400, detail="Status and location are required")
    if status not in FLOW:
        raise HTTPException(status_code=400, detail=f"Unknown tracking status {status}")
    if order.status == "cancelled":
        raise HTTPException(status_code=409, detail="Order is cancelled")

    if latitude is None or longitude is None:
        latitude, longitude = KNOWN_LOCATIONS.get(location, (None, None))

    check_manual_move(db, order, status, actor)
    status_changed = transition_order(order, status)

    point = ShippingTracking(
        order_id=order.id,
        status=status,
        location=location,
        latitude=latitude,
        longitude=longitude,
        description=(description or "").strip() or None,
    )
    db.add(point)

    order.current_location = location
    if latitude is not None and longitude is not None:
        order.latitude = latitude
        order.longitude = longitude
    if tracking_number:
        order.tracking_number = tracking_number
    if estimated_delivery:
        order.estimated_delivery = estimated_delivery

    notify(
        db,
        order.customer_id,
        "تحديث الشحن",
        f"طلبك {order.order_number}: {STATUS_LABELS[status]} - {location}",
        type="tracking",
        data={"order_id": order.id, "status": status, "location": location},
    )

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("tracking append failed order=%s", order.id)
        raise HTTPException(status_code=500, detail="Failed to update tracking")

    db.refresh(point)
    logger.info(
        "order %s tracking %s @ %s by %s (status changed=%s)",
        order.order_number, status, location, actor.id, status_changed,
    )
    # Realtime channel for open tracking views; polling clients read the trail instead
    publish(
        "tracking.appended",
        {
            "order_id": order.id,
            "point_id": point.id,
            "status": status,
            "location": location,
            "latitude": latitude,
            "longitude": longitude,
        },
        safe=True,
    )
    return point


def tracking_trail(db: Session, order_id: int) -> list[ShippingTracking]:
    return (
        db.query(ShippingTracking)
        .filter(ShippingTracking.order_id == order_id)
        .order_by(ShippingTracking.created_at, ShippingTracking.id)
        .all()
    )
