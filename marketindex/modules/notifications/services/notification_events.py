"""
Notification events service.
Turns lifecycle events into notification rows. The row is added to the
caller's session so it commits together with the state transition that
produced it: one transition, one notification.
"""
import uuid
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from marketindex.modules.notifications.models.notification import Notification
from marketindex.modules.notifications.schemas.events import (
    ContentReceived,
    FriendAccepted,
    FriendRequested,
)
from marketindex.modules.user_management.models.user import User

logger = logging.getLogger(__name__)


def _display(db: Session, user_id: str) -> str:
    user = db.get(User, user_id)
    if not user:
        return "Someone"
    return user.display_name or user.username


def describe_event(db: Session, event) -> Tuple[str, Optional[str], str, str]:
    """
    Map an event to (recipient id, actor id, related id, text).

    Raises:
        TypeError: for anything outside the closed set of event kinds
    """
    if isinstance(event, FriendRequested):
        return (
            event.recipient_id,
            event.requester_id,
            event.relationship_id,
            f"{_display(db, event.requester_id)} sent you a friend request",
        )
    if isinstance(event, FriendAccepted):
        return (
            event.requester_id,
            event.accepter_id,
            event.relationship_id,
            f"{_display(db, event.accepter_id)} accepted your friend request",
        )
    if isinstance(event, ContentReceived):
        return (
            event.recipient_id,
            event.sender_id,
            event.item_id,
            f"{_display(db, event.sender_id)} sent you a {event.content_kind}",
        )
    raise TypeError(f"Unhandled notification event: {type(event).__name__}")


def emit_event(db: Session, event) -> Notification:
    """Stage the notification for an event in the caller's transaction"""
    user_id, actor_id, related_id, text = describe_event(db, event)
    notification = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        actor_id=actor_id,
        type=event.kind,
        content=text,
        related_id=related_id,
    )
    db.add(notification)
    logger.debug(f"Staged {event.kind} notification for user {user_id}")
    return notification
