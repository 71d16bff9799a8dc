import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .events import publish
from .models import MerchantRequest, UserRole
from .notifications import notify
from .security import CurrentUser

logger = logging.getLogger(__name__)


def set_role(db: Session, user_id: str, role: str) -> UserRole:
    """Upsert the user's role row. Does not commit."""
    row = db.query(UserRole).filter(UserRole.user_id == user_id).first()
    if row is None:
        row = UserRole(user_id=user_id, role=role)
        db.add(row)
    else:
        row.role = role
    return row


def latest_request(db: Session, user_id: str) -> Optional[MerchantRequest]:
    return (
        db.query(MerchantRequest)
        .filter(MerchantRequest.user_id == user_id)
        .order_by(MerchantRequest.id.desc())
        .first()
    )


def submit_request(
    db: Session,
    user: CurrentUser,
    business_name: str,
    phone: str,
    wilaya: str,
    business_description: Optional[str] = None,
) -> MerchantRequest:
    if user.is_merchant:
        raise HTTPException(status_code=409, detail="Already a merchant")

    last = latest_request(db, user.id)
    if last and last.status == "pending":
        raise HTTPException(status_code=409, detail="A request is already pending review")

    req = MerchantRequest(
        user_id=user.id,
        business_name=business_name.strip(),
        business_description=(business_description or "").strip() or None,
        phone=phone.strip(),
        wilaya=wilaya.strip(),
        status="pending",
    )
    db.add(req)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("merchant request failed user=%s", user.id)
        raise HTTPException(status_code=500, detail="Failed to submit request")

    db.refresh(req)
    logger.info("merchant request %s submitted user=%s", req.id, user.id)
    publish("merchant.requested", {"request_id": req.id, "user_id": user.id}, safe=True)
    return req


def review_request(
    db: Session,
    request_id: int,
    approve: bool,
    admin: CurrentUser,
    notes: Optional[str] = None,
) -> MerchantRequest:
    req = db.query(MerchantRequest).filter(MerchantRequest.id == request_id).first()
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")

    target = "approved" if approve else "rejected"
    if req.status == target:
        return req
    if req.status != "pending":
        raise HTTPException(status_code=409, detail=f"Request already {req.status}")

    notes = (notes or "").strip() or None
    if not approve and not notes:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    req.status = target
    req.admin_notes = notes
    req.reviewed_by = admin.id
    req.reviewed_at = datetime.now(timezone.utc)

    if approve:
        set_role(db, req.user_id, "merchant")
        title, message = "تم قبول طلبك", f"أصبح {req.business_name} تاجراً في قفيفات"
    else:
        title, message = "تم رفض طلبك", notes

    notify(db, req.user_id, title, message, type="merchant", data={"request_id": req.id, "status": target})

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("merchant request %s review failed", request_id)
        raise HTTPException(status_code=500, detail="Failed to review request")

    logger.info("merchant request %s %s by %s", req.id, target, admin.id)
    publish(f"merchant.{target}", {"request_id": req.id, "user_id": req.user_id}, safe=True)
    return req
