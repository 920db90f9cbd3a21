from typing import Optional
from datetime import datetime
from pydantic import BaseModel

from marketindex.modules.content.services.content import ContentKind

class ContentItemCreate(BaseModel):
    kind: ContentKind = ContentKind.TIP
    # Omit for a broadcast (the default for signals and stories)
    recipient_id: Optional[str] = None
    media_ref: str
    annotation: Optional[str] = None
    symbol_tag: Optional[str] = None
    # Client-chosen id that makes a retried broadcast resume instead of duplicating
    broadcast_id: Optional[str] = None

class ContentItem(BaseModel):
    """Content item returned to client"""
    id: str
    kind: str
    sender_id: str
    recipient_id: str
    broadcast_id: Optional[str] = None
    media_ref: str
    annotation: Optional[str] = None
    symbol_tag: Optional[str] = None
    consumed: bool
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
