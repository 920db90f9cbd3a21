from typing import List, Optional

from sqlalchemy.orm import Session

from marketindex.core.exceptions import NotFound
from marketindex.modules.notifications.models.notification import Notification

def get_notification(db: Session, notification_id: str) -> Optional[Notification]:
    """Get notification by ID"""
    return db.query(Notification).filter(Notification.id == notification_id).first()

def get_user_notifications(db: Session, user_id: str, skip: int = 0, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    """Get notifications for a user, newest first"""
    query = db.query(Notification).filter(Notification.user_id == user_id)

    if unread_only:
        query = query.filter(Notification.is_read == False)

    return query.order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()

def mark_as_read(db: Session, notification_id: str, user_id: str) -> Notification:
    """Mark one of the user's notifications as read"""
    notification = get_notification(db, notification_id)
    if not notification or notification.user_id != user_id:
        raise NotFound("Notification not found")

    notification.is_read = True
    db.commit()
    db.refresh(notification)

    return notification

def delete_user_notifications(db: Session, user_id: str) -> int:
    """Stage deletion of every notification addressed to or triggered by a user"""
    return db.query(Notification).filter(
        (Notification.user_id == user_id) | (Notification.actor_id == user_id)
    ).delete(synchronize_session=False)
