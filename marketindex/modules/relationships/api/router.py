from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from marketindex.db.session import get_db
from marketindex.deps import get_current_user, get_dispatcher
from marketindex.core.exceptions import NotFound
from marketindex.modules.notifications.services.dispatcher import EventDispatcher
from marketindex.modules.user_management.models.user import User
from marketindex.modules.user_management.schemas.user import User as UserSchema
from marketindex.modules.user_management.services.user import get_user
from marketindex.modules.relationships.schemas.relationship import (
    Relationship as RelationshipSchema,
    RelationshipRequestCreate,
    RelationshipStatus,
)
from marketindex.modules.relationships.services.relationship import (
    accept_relationship,
    cancel_relationship,
    decline_relationship,
    get_relationship_status,
    list_friends,
    list_pending_requests,
    remove_friend,
    request_relationship,
)

router = APIRouter()
logger = logging.getLogger(__name__)

def _check_user_exists(db: Session, user_id: str) -> User:
    """Validate user exists, raise NotFound if not"""
    user = get_user(db, user_id=user_id)
    if not user:
        raise NotFound("User not found")
    return user

@router.post("/request", response_model=RelationshipSchema)
def send_friend_request(
    *,
    db: Session = Depends(get_db),
    request_in: RelationshipRequestCreate,
    current_user: User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> Any:
    return request_relationship(db, current_user.id, request_in.target_id, dispatcher=dispatcher)

@router.put("/request/{relationship_id}/accept", response_model=RelationshipSchema)
def accept_friend_request(
    *,
    db: Session = Depends(get_db),
    relationship_id: str,
    current_user: User = Depends(get_current_user),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> Any:
    return accept_relationship(db, relationship_id, current_user.id, dispatcher=dispatcher)

@router.put("/request/{relationship_id}/decline", response_model=Dict[str, str])
def decline_friend_request(
    *,
    db: Session = Depends(get_db),
    relationship_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    decline_relationship(db, relationship_id, current_user.id)
    return {"message": "Friend request declined"}

@router.delete("/request/{relationship_id}", response_model=Dict[str, str])
def cancel_friend_request(
    *,
    db: Session = Depends(get_db),
    relationship_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    cancel_relationship(db, relationship_id, current_user.id)
    return {"message": "Friend request cancelled"}

@router.get("/requests/received", response_model=List[RelationshipSchema])
def get_my_received_friend_requests(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return list_pending_requests(db, current_user.id, "received")

@router.get("/requests/sent", response_model=List[RelationshipSchema])
def get_my_sent_friend_requests(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return list_pending_requests(db, current_user.id, "sent")

@router.get("/", response_model=List[UserSchema])
def get_my_friends(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    friends = []
    for friend_id in sorted(list_friends(db, current_user.id)):
        friend = get_user(db, friend_id)
        if friend:
            friends.append(friend)
        else:
            logger.warning(f"Friend relationship exists but user not found: {friend_id}")
    return friends

@router.delete("/{friend_id}", response_model=Dict[str, str])
def remove_my_friend(
    *,
    db: Session = Depends(get_db),
    friend_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    remove_friend(db, current_user.id, friend_id)
    return {"message": "Friend removed successfully"}

@router.get("/status/{user_id}", response_model=RelationshipStatus)
def check_friendship_status(
    *,
    db: Session = Depends(get_db),
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    _check_user_exists(db, user_id)
    status, relationship_id = get_relationship_status(db, current_user.id, user_id)
    return {"status": status, "relationship_id": relationship_id}
