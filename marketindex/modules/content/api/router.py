from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketindex.core.storage import MediaStorage
from marketindex.db.session import get_db
from marketindex.deps import get_current_user, get_dispatcher, get_media_storage
from marketindex.modules.notifications.services.dispatcher import EventDispatcher
from marketindex.modules.user_management.models.user import User
from marketindex.modules.content.schemas.content_item import ContentItem as ContentItemSchema, ContentItemCreate
from marketindex.modules.content.services.content import (
    create_content_item,
    default_addressing,
    delete_content_item,
    list_inbox,
    list_sent,
    mark_consumed,
)

router = APIRouter()

@router.post("/", response_model=List[ContentItemSchema])
def send_content(
    *,
    db: Session = Depends(get_db),
    item_in: ContentItemCreate,
    current_user: User = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> Any:
    """Send a tip/snap to a friend, or broadcast a signal/story to all friends"""
    return create_content_item(
        db,
        sender_id=current_user.id,
        addressing=default_addressing(item_in.kind, item_in.recipient_id),
        media_ref=item_in.media_ref,
        annotation=item_in.annotation,
        symbol_tag=item_in.symbol_tag,
        kind=item_in.kind,
        broadcast_id=item_in.broadcast_id,
        storage=storage,
        dispatcher=dispatcher,
    )

@router.get("/inbox", response_model=List[ContentItemSchema])
def read_inbox(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return list_inbox(db, current_user.id)

@router.get("/sent", response_model=List[ContentItemSchema])
def read_sent(
    *,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    return list_sent(db, current_user.id)

@router.post("/{item_id}/consume", response_model=ContentItemSchema)
def consume_item(
    *,
    db: Session = Depends(get_db),
    item_id: str,
    current_user: User = Depends(get_current_user),
) -> Any:
    return mark_consumed(db, item_id, reader_id=current_user.id)

@router.delete("/{item_id}", response_model=Dict[str, str])
def delete_item(
    *,
    db: Session = Depends(get_db),
    item_id: str,
    current_user: User = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
) -> Any:
    delete_content_item(db, item_id, acting_user_id=current_user.id, storage=storage)
    return {"message": "Content item deleted"}
