from typing import Optional
from datetime import datetime
from pydantic import BaseModel

class NotificationBase(BaseModel):
    type: str
    content: str
    related_id: Optional[str] = None

class NotificationInDBBase(NotificationBase):
    id: str
    user_id: str
    is_read: bool
    created_at: datetime
    actor_id: Optional[str] = None

    class Config:
        from_attributes = True

class Notification(NotificationInDBBase):
    """Notification model returned to client"""
    pass
