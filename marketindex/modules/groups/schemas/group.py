from typing import List
from datetime import datetime
from pydantic import BaseModel

class GroupCreate(BaseModel):
    name: str
    member_ids: List[str]

class GroupMemberAdd(BaseModel):
    user_id: str

class Group(BaseModel):
    """Group returned to client"""
    id: str
    name: str
    created_by: str
    created_at: datetime
    member_ids: List[str] = []

    class Config:
        from_attributes = True

class GroupMessageCreate(BaseModel):
    text: str

class GroupMessage(BaseModel):
    """Message in a group conversation"""
    id: str
    group_id: str
    sender_id: str
    text: str
    created_at: datetime

    class Config:
        from_attributes = True
