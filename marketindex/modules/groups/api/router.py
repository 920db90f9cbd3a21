from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketindex.db.session import get_db
from marketindex.deps import get_current_user
from marketindex.modules.user_management.models.user import User
from marketindex.modules.groups.models.group import Group
from marketindex.modules.groups.schemas.group import Group as GroupSchema, GroupCreate, GroupMemberAdd
from marketindex.modules.groups.schemas.group import GroupMessage as GroupMessageSchema, GroupMessageCreate
from marketindex.modules.groups.services.group import (
    add_group_member,
    create_group,
    get_group_member_ids,
    list_group_messages,
    list_groups_for_user,
    remove_group_member,
    send_group_message,
)

router = APIRouter()

def _to_schema(db: Session, group: Group) -> GroupSchema:
    return GroupSchema(
        id=group.id,
        name=group.name,
        created_by=group.created_by,
        created_at=group.created_at,
        member_ids=get_group_member_ids(db, group.id),
    )

@router.post("/", response_model=GroupSchema)
def create_my_group(
    *,
    db: Session = Depends(get_db),
    group_in: GroupCreate,
    current_user: User = Depends(get_current_user),
) -> Any:
    group = create_group(db, group_in.name, group_in.member_ids, current_user.id)
    return _to_schema(db, group)

@router.get("/", response_model=List[GroupSchema])
def read_my_groups(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return [_to_schema(db, group) for group in list_groups_for_user(db, current_user.id)]

@router.post("/{group_id}/members", response_model=GroupSchema)
def add_member(
    *,
    db: Session = Depends(get_db),
    group_id: str,
    member_in: GroupMemberAdd,
    current_user: User = Depends(get_current_user),
) -> Any:
    group = add_group_member(db, group_id, member_in.user_id, acting_user_id=current_user.id)
    return _to_schema(db, group)

@router.delete("/{group_id}/members/{user_id}", response_model=Dict[str, Any])
def remove_member(
    *,
    db: Session = Depends(get_db),
    group_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    group = remove_group_member(db, group_id, user_id, acting_user_id=current_user.id)
    return {"group_id": group_id, "deleted": group is None}

@router.post("/{group_id}/messages", response_model=GroupMessageSchema)
def post_message(
    *,
    db: Session = Depends(get_db),
    group_id: str,
    message_in: GroupMessageCreate,
    current_user: User = Depends(get_current_user),
) -> Any:
    return send_group_message(db, group_id, current_user.id, message_in.text)

@router.get("/{group_id}/messages", response_model=List[GroupMessageSchema])
def read_messages(
    *,
    db: Session = Depends(get_db),
    group_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Group conversation, oldest message first"""
    return list_group_messages(db, group_id, current_user.id, skip=skip, limit=limit)
