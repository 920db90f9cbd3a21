from datetime import datetime, timezone
from typing import Iterable, List, Optional
import uuid
import logging

from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.exceptions import InvalidOperation, NotFound
from marketindex.modules.groups.models.group import Group, GroupMember, GroupMessage
from marketindex.modules.user_management.services.user import get_user

logger = logging.getLogger(__name__)

def get_group(db: Session, group_id: str) -> Optional[Group]:
    return db.get(Group, group_id)

def get_group_member_ids(db: Session, group_id: str) -> List[str]:
    rows = db.query(GroupMember.user_id).filter(GroupMember.group_id == group_id).order_by(GroupMember.user_id).all()
    return [row[0] for row in rows]

def list_groups_for_user(db: Session, user_id: str) -> List[Group]:
    return (
        db.query(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == user_id)
        .order_by(Group.created_at.desc())
        .all()
    )

def create_group(db: Session, name: str, member_ids: Iterable[str], created_by: str) -> Group:
    """Create a group; the creator is always a member and at least two are required"""
    name = (name or "").strip()
    if not name:
        raise InvalidOperation("Group name cannot be empty")

    members = set(member_ids) | {created_by}
    if len(members) < 2:
        raise InvalidOperation("A group must have at least two members")
    for member_id in members:
        if not get_user(db, member_id):
            raise NotFound(f"User {member_id} not found")

    group = Group(id=str(uuid.uuid4()), name=name, created_by=created_by)
    db.add(group)
    for member_id in sorted(members):
        db.add(GroupMember(group_id=group.id, user_id=member_id))
    db.commit()
    db.refresh(group)
    logger.info(f"Created group {group.id} with {len(members)} members")
    return group

def add_group_member(db: Session, group_id: str, user_id: str, acting_user_id: Optional[str] = None) -> Group:
    group = get_group(db, group_id)
    if not group:
        raise NotFound("Group not found")
    if acting_user_id is not None and not db.get(GroupMember, (group_id, acting_user_id)):
        raise InvalidOperation("Only members can add to a group")
    if not get_user(db, user_id):
        raise NotFound("User not found")
    if not db.get(GroupMember, (group_id, user_id)):
        db.add(GroupMember(group_id=group_id, user_id=user_id))
        db.commit()
    return group

def _stage_member_removal(db: Session, group_id: str, user_id: str) -> bool:
    """Stage removal; deletes the group instead when no member would remain. True if deleted."""
    # Serializes concurrent leavers of the same group before the count
    db.query(Group).filter(Group.id == group_id).with_for_update().first()
    db.query(GroupMember).filter(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id,
    ).delete(synchronize_session=False)
    remaining = db.query(GroupMember).filter(GroupMember.group_id == group_id).count()
    if remaining == 0:
        db.query(GroupMessage).filter(GroupMessage.group_id == group_id).delete(synchronize_session=False)
        db.query(Group).filter(Group.id == group_id).delete(synchronize_session=False)
        return True
    return False

def remove_group_member(db: Session, group_id: str, user_id: str, acting_user_id: Optional[str] = None) -> Optional[Group]:
    """
    Remove a member. Returns the group, or None when it was deleted because
    its last member left. Removing a non-member is a no-op.
    """
    group = get_group(db, group_id)
    if not group:
        raise NotFound("Group not found")
    if acting_user_id is not None and acting_user_id != user_id and acting_user_id != group.created_by:
        raise InvalidOperation("Only the group creator can remove other members")

    deleted = _stage_member_removal(db, group_id, user_id)
    db.commit()
    if deleted:
        logger.info(f"Group {group_id} deleted after its last member left")
        return None
    db.refresh(group)
    return group

def remove_user_from_all_groups(db: Session, user_id: str) -> int:
    """Stage the user's removal from every group; returns how many groups were deleted"""
    group_ids = [row[0] for row in db.query(GroupMember.group_id).filter(GroupMember.user_id == user_id).all()]
    deleted = 0
    for group_id in group_ids:
        if _stage_member_removal(db, group_id, user_id):
            deleted += 1
    return deleted

def _require_member(db: Session, group_id: str, user_id: str) -> Group:
    group = get_group(db, group_id)
    if not group:
        raise NotFound("Group not found")
    if not db.get(GroupMember, (group_id, user_id)):
        raise InvalidOperation("Only members can read or post group messages")
    return group

def send_group_message(db: Session, group_id: str, sender_id: str, text: str) -> GroupMessage:
    """Post to a group conversation. Blank text is rejected, never stored."""
    _require_member(db, group_id, sender_id)
    text = (text or "").strip()
    if not text:
        raise InvalidOperation("Message text cannot be empty")
    if len(text) > settings.GROUP_MESSAGE_MAX_LENGTH:
        raise InvalidOperation(f"Message must be at most {settings.GROUP_MESSAGE_MAX_LENGTH} characters")

    message = GroupMessage(
        id=str(uuid.uuid4()),
        group_id=group_id,
        sender_id=sender_id,
        text=text,
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.info(f"Message {message.id} posted to group {group_id} by {sender_id}")
    return message

def list_group_messages(db: Session, group_id: str, reader_id: str,
                        skip: int = 0, limit: int = 100) -> List[GroupMessage]:
    """Oldest first, the order a conversation is read in"""
    _require_member(db, group_id, reader_id)
    return (
        db.query(GroupMessage)
        .filter(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.created_at.asc(), GroupMessage.id)
        .offset(skip)
        .limit(limit)
        .all()
    )

def delete_user_group_messages(db: Session, user_id: str) -> int:
    """Stage deletion of everything the user posted, in any group"""
    return db.query(GroupMessage).filter(GroupMessage.sender_id == user_id).delete(synchronize_session=False)
