from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import commit_or_500, get_db
from ..models import Notification
from ..schemas import NotificationOut
from ..security import CurrentUser, require_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationOut])
def my_notifications(
    unread: bool = False,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread:
        q = q.filter(Notification.is_read == False)  # noqa: E712
    return q.order_by(Notification.id.desc()).limit(100).all()


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: int, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    n = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if not n:
        raise HTTPException(status_code=404, detail="Not found")
    n.is_read = True
    commit_or_500(db, "mark notification read")
    db.refresh(n)
    return n


@router.post("/read-all")
def mark_all_read(user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    commit_or_500(db, "mark notifications read")
    return {"ok": True, "updated": updated}
