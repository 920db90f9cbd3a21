from typing import List, Optional, Set, Tuple
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketindex.core.exceptions import AlreadyExists, InvalidOperation, InvalidState, NotFound
from marketindex.modules.cleanup.triggers import on_relationship_changed
from marketindex.modules.notifications.schemas.events import FriendAccepted, FriendRequested
from marketindex.modules.notifications.services.dispatcher import EventDispatcher, event_dispatcher
from marketindex.modules.notifications.services.notification_events import emit_event
from marketindex.modules.relationships.models.relationship import (
    RELATIONSHIP_ACCEPTED,
    RELATIONSHIP_PENDING,
    Relationship,
    canonical_pair_key,
)
from marketindex.modules.user_management.services.user import get_user

logger = logging.getLogger(__name__)

def _involving(user_id: str):
    return or_(Relationship.user_low == user_id, Relationship.user_high == user_id)

def get_relationship(db: Session, relationship_id: str) -> Optional[Relationship]:
    """Get relationship by its canonical pair id"""
    return db.get(Relationship, relationship_id)

def get_relationship_between(db: Session, user_a: str, user_b: str) -> Optional[Relationship]:
    return db.get(Relationship, canonical_pair_key(user_a, user_b))

def request_relationship(db: Session, initiator_id: str, target_id: str,
                         dispatcher: Optional[EventDispatcher] = None) -> Relationship:
    """
    Create a pending relationship from initiator to target.

    Raises:
        InvalidOperation: initiator and target are the same user
        NotFound: target user does not exist
        AlreadyExists: the pair already has a relationship in any state or direction
    """
    dispatcher = dispatcher or event_dispatcher
    if initiator_id == target_id:
        raise InvalidOperation("Cannot send friend request to yourself")
    if not get_user(db, target_id):
        raise NotFound("User not found")

    key = canonical_pair_key(initiator_id, target_id)
    if db.get(Relationship, key):
        raise AlreadyExists("A relationship with this user already exists")

    low, high = sorted((initiator_id, target_id))
    relationship = Relationship(
        id=key,
        user_low=low,
        user_high=high,
        initiator_id=initiator_id,
        status=RELATIONSHIP_PENDING,
    )
    db.add(relationship)
    event = FriendRequested(relationship_id=key, requester_id=initiator_id, recipient_id=target_id)
    emit_event(db, event)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a simultaneous request for the same pair
        db.rollback()
        raise AlreadyExists("A relationship with this user already exists")
    db.refresh(relationship)

    logger.info(f"Friend request {key} created by {initiator_id}")
    on_relationship_changed(event, dispatcher)
    return relationship

def _pending_for_recipient(db: Session, relationship_id: str, acting_user_id: str) -> Relationship:
    relationship = get_relationship(db, relationship_id)
    if not relationship:
        raise NotFound("Friend request not found")
    if relationship.status != RELATIONSHIP_PENDING:
        raise InvalidState(f"Friend request already {relationship.status}")
    if not relationship.involves(acting_user_id) or acting_user_id == relationship.initiator_id:
        raise InvalidOperation("Only the recipient can respond to a friend request")
    return relationship

def accept_relationship(db: Session, relationship_id: str, acting_user_id: str,
                        dispatcher: Optional[EventDispatcher] = None) -> Relationship:
    """Transition pending -> accepted; only the non-initiating party may accept"""
    dispatcher = dispatcher or event_dispatcher
    relationship = _pending_for_recipient(db, relationship_id, acting_user_id)
    requester_id = relationship.initiator_id

    # Conditional update: exactly one concurrent accepter wins the transition
    updated = db.query(Relationship).filter(
        Relationship.id == relationship_id,
        Relationship.status == RELATIONSHIP_PENDING,
    ).update({"status": RELATIONSHIP_ACCEPTED}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidState("Friend request is no longer pending")

    event = FriendAccepted(relationship_id=relationship_id, accepter_id=acting_user_id, requester_id=requester_id)
    emit_event(db, event)
    db.commit()
    db.refresh(relationship)

    logger.info(f"Friend request {relationship_id} accepted by {acting_user_id}")
    on_relationship_changed(event, dispatcher)
    return relationship

def decline_relationship(db: Session, relationship_id: str, acting_user_id: str) -> Relationship:
    """Recipient declines a pending request; the relationship is deleted"""
    relationship = _pending_for_recipient(db, relationship_id, acting_user_id)
    db.delete(relationship)
    db.commit()
    logger.info(f"Friend request {relationship_id} declined by {acting_user_id}")
    return relationship

def cancel_relationship(db: Session, relationship_id: str, acting_user_id: str) -> Relationship:
    """Initiator withdraws a pending request"""
    relationship = get_relationship(db, relationship_id)
    if not relationship:
        raise NotFound("Friend request not found")
    if relationship.status != RELATIONSHIP_PENDING:
        raise InvalidState(f"Friend request already {relationship.status}")
    if acting_user_id != relationship.initiator_id:
        raise InvalidOperation("Only the sender can cancel a friend request")
    db.delete(relationship)
    db.commit()
    logger.info(f"Friend request {relationship_id} cancelled by {acting_user_id}")
    return relationship

def remove_friend(db: Session, user_id: str, friend_id: str) -> None:
    """Delete an accepted relationship"""
    relationship = get_relationship_between(db, user_id, friend_id)
    if not relationship or relationship.status != RELATIONSHIP_ACCEPTED:
        raise InvalidOperation("Not friends with this user")
    db.delete(relationship)
    db.commit()
    logger.info(f"Removed friendship {relationship.id}")

def list_friends(db: Session, user_id: str) -> Set[str]:
    """Ids of everyone in an accepted relationship with user_id, derived on every call"""
    rows = db.query(Relationship.user_low, Relationship.user_high).filter(
        _involving(user_id),
        Relationship.status == RELATIONSHIP_ACCEPTED,
    ).all()
    return {high if low == user_id else low for low, high in rows}

def are_friends(db: Session, user_a: str, user_b: str) -> bool:
    relationship = get_relationship_between(db, user_a, user_b)
    return relationship is not None and relationship.status == RELATIONSHIP_ACCEPTED

def list_pending_requests(db: Session, user_id: str, direction: str = "received") -> List[Relationship]:
    """Pending requests the user sent or received"""
    if direction not in ["sent", "received"]:
        raise InvalidOperation(f"Invalid direction '{direction}'")

    query = db.query(Relationship).filter(
        _involving(user_id),
        Relationship.status == RELATIONSHIP_PENDING,
    )
    if direction == "sent":
        query = query.filter(Relationship.initiator_id == user_id)
    else:
        query = query.filter(Relationship.initiator_id != user_id)
    return query.order_by(Relationship.created_at.desc()).all()

def get_relationship_status(db: Session, user_id: str, other_id: str) -> Tuple[str, Optional[str]]:
    """Return (status, relationship id) as seen by user_id"""
    if user_id == other_id:
        return "self", None

    relationship = get_relationship_between(db, user_id, other_id)
    if not relationship:
        return "not_friends", None
    if relationship.status == RELATIONSHIP_ACCEPTED:
        return "friends", relationship.id
    if relationship.initiator_id == user_id:
        return "request_sent", relationship.id
    return "request_received", relationship.id

def delete_user_relationships(db: Session, user_id: str) -> int:
    """Stage deletion of every relationship referencing user_id, whatever its state"""
    return db.query(Relationship).filter(_involving(user_id)).delete(synchronize_session=False)
