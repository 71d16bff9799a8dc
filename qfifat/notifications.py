from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .models import Notification


def notify(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    *,
    type: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Queue an in-app notification inside the caller's transaction."""
    n = Notification(user_id=user_id, title=title, message=message, type=type, data=data)
    db.add(n)
    return n
