from typing import Optional
from datetime import datetime
from pydantic import BaseModel, field_validator

from marketindex.core.config import settings

class UserBase(BaseModel):
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None

class UserUpdate(BaseModel):
    """Fields a user may change; the username is claimed once at sign-up"""
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None
    push_token: Optional[str] = None

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Display name cannot be empty")
        if len(v) > settings.DISPLAY_NAME_MAX_LENGTH:
            raise ValueError(f"Display name must be at most {settings.DISPLAY_NAME_MAX_LENGTH} characters")
        return v

class UserInDBBase(UserBase):
    id: str
    created_at: datetime

    class Config:
        from_attributes = True

class User(UserInDBBase):
    """Public user profile returned to client"""
    pass

class UserMe(UserInDBBase):
    """The signed-in user's own profile"""
    email: Optional[str] = None
    push_token: Optional[str] = None
