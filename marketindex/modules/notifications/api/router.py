from typing import Any, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketindex.db.session import get_db
from marketindex.deps import get_current_user
from marketindex.modules.user_management.models.user import User
from marketindex.modules.notifications.schemas.notification import Notification as NotificationSchema
from marketindex.modules.notifications.services.notification import get_user_notifications, mark_as_read

router = APIRouter()

@router.get("/", response_model=List[NotificationSchema])
def read_notifications(
    *,
    db: Session = Depends(get_db),
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
) -> Any:
    return get_user_notifications(db, current_user.id, skip=skip, limit=limit, unread_only=unread_only)

@router.put("/{notification_id}/read", response_model=NotificationSchema)
def read_notification(
    *,
    db: Session = Depends(get_db),
    notification_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    return mark_as_read(db, notification_id, current_user.id)
