from typing import Optional
from datetime import datetime
from pydantic import BaseModel

class RelationshipRequestCreate(BaseModel):
    target_id: str

class Relationship(BaseModel):
    """Relationship returned to client"""
    id: str
    user_low: str
    user_high: str
    initiator_id: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class RelationshipStatus(BaseModel):
    status: str
    relationship_id: Optional[str] = None
