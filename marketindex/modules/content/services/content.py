"""
Content store policy for tips, signals, snaps and stories.

Every item is addressed to exactly one recipient. A broadcast is expanded at
write time into one item per current friend of the sender, so later changes
to the friend graph never alter who already received a given broadcast.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional
import re
import uuid
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.exceptions import InvalidOperation, InvalidState, InvalidSymbolTag, NotFound, StorageError
from marketindex.core.storage import CONTENT_CATEGORIES, MediaCategory, MediaStorage, media_storage, parse_media_ref
from marketindex.modules.cleanup.triggers import on_content_item_deleted
from marketindex.modules.content.models.broadcast import Broadcast, BroadcastRecipient
from marketindex.modules.content.models.content_item import ContentItem
from marketindex.modules.notifications.schemas.events import ContentReceived
from marketindex.modules.notifications.services.dispatcher import EventDispatcher, event_dispatcher
from marketindex.modules.notifications.services.notification_events import emit_event
from marketindex.modules.relationships.services.relationship import are_friends, list_friends
from marketindex.modules.user_management.services.user import get_user

logger = logging.getLogger(__name__)

SYMBOL_TAG_RE = re.compile(r"^[A-Z]{1,5}$")


def utcnow() -> datetime:
    """Naive UTC, matching how DateTime columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ContentKind(str, Enum):
    TIP = "tip"
    SIGNAL = "signal"
    SNAP = "snap"
    STORY = "story"


@dataclass(frozen=True)
class KindPolicy:
    broadcast: bool
    category: MediaCategory


KIND_POLICIES = {
    ContentKind.TIP: KindPolicy(broadcast=False, category=MediaCategory.TIPS),
    ContentKind.SNAP: KindPolicy(broadcast=False, category=MediaCategory.SNAPS),
    ContentKind.SIGNAL: KindPolicy(broadcast=True, category=MediaCategory.SIGNALS),
    ContentKind.STORY: KindPolicy(broadcast=True, category=MediaCategory.STORIES),
}


@dataclass(frozen=True)
class Addressing:
    """Either one recipient, or every current friend of the sender"""
    recipient_id: Optional[str] = None

    @classmethod
    def direct(cls, recipient_id: str) -> "Addressing":
        if not recipient_id:
            raise InvalidOperation("Direct addressing needs a recipient")
        return cls(recipient_id=recipient_id)

    @classmethod
    def broadcast(cls) -> "Addressing":
        return cls(recipient_id=None)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_id is None


def default_addressing(kind: ContentKind, recipient_id: Optional[str] = None) -> Addressing:
    if recipient_id:
        return Addressing.direct(recipient_id)
    if KIND_POLICIES[ContentKind(kind)].broadcast:
        return Addressing.broadcast()
    raise InvalidOperation(f"A {ContentKind(kind).value} needs a recipient")


def normalize_symbol_tag(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a ticker-style tag: drop everything but ASCII letters, uppercase.

    Returns None when no tag was given. Raises InvalidSymbolTag when the
    normalized value is not 1-5 letters; it is never truncated to fit.
    """
    if raw is None or raw == "":
        return None
    normalized = re.sub(r"[^A-Za-z]", "", raw).upper()
    if not SYMBOL_TAG_RE.match(normalized):
        raise InvalidSymbolTag(f"Symbol tag {raw!r} must be 1 to 5 letters")
    return normalized


def _validate_media_ref(media_ref: str, sender_id: str, storage: MediaStorage) -> None:
    category, owner_id, _ = parse_media_ref(media_ref)
    if category not in CONTENT_CATEGORIES:
        raise InvalidOperation(f"Media in {category.value} cannot be attached to content")
    if owner_id != sender_id:
        raise InvalidOperation("Media must be uploaded by the sender")
    if not storage.exists(media_ref):
        raise NotFound(f"Media {media_ref} not found")


def _write_item(db: Session, item: ContentItem, dispatcher: EventDispatcher,
                broadcast_id: Optional[str] = None) -> ContentItem:
    event = ContentReceived(
        item_id=item.id,
        content_kind=item.kind,
        sender_id=item.sender_id,
        recipient_id=item.recipient_id,
    )
    db.add(item)
    if broadcast_id:
        db.query(BroadcastRecipient).filter(
            BroadcastRecipient.broadcast_id == broadcast_id,
            BroadcastRecipient.recipient_id == item.recipient_id,
        ).update({"written": True}, synchronize_session=False)
    emit_event(db, event)
    db.commit()
    db.refresh(item)
    dispatcher.dispatch(event)
    return item


def _record_broadcast(db: Session, broadcast_id: str, sender_id: str, kind: ContentKind, media_ref: str,
                      recipient_ids: List[str], created_at: datetime, expires_at: datetime) -> Broadcast:
    record = Broadcast(
        id=broadcast_id,
        sender_id=sender_id,
        kind=kind.value,
        media_ref=media_ref,
        created_at=created_at,
        expires_at=expires_at,
    )
    db.add(record)
    for recipient_id in recipient_ids:
        db.add(BroadcastRecipient(broadcast_id=broadcast_id, recipient_id=recipient_id, written=False))
    try:
        db.commit()
    except IntegrityError:
        # A concurrent first attempt recorded it; carry on as a resume
        db.rollback()
        record = db.get(Broadcast, broadcast_id)
        if record.sender_id != sender_id:
            raise InvalidOperation("Broadcast id belongs to another sender")
        return record
    db.refresh(record)
    logger.info(f"Recorded broadcast {broadcast_id} from {sender_id} to {len(recipient_ids)} friends")
    return record


def create_content_item(
    db: Session,
    sender_id: str,
    addressing: Addressing,
    media_ref: str,
    annotation: Optional[str] = None,
    symbol_tag: Optional[str] = None,
    kind: ContentKind = ContentKind.TIP,
    ttl: Optional[timedelta] = None,
    broadcast_id: Optional[str] = None,
    storage: Optional[MediaStorage] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> List[ContentItem]:
    """
    Create content for a direct recipient, or fan it out to the sender's friends.

    A broadcast is first recorded with its recipient set, then written one
    item at a time with deterministic ids (broadcast_id + recipient), each
    commit also marking that recipient written. Re-running an interrupted
    broadcast with the same broadcast_id writes only recipients never
    written, so copies that were consumed and deleted since are not revived.

    Returns:
        The items for this request; for a broadcast, its live copies, or
        empty when the sender has no friends

    Raises:
        InvalidState: resuming a broadcast whose expiry has passed
    """
    storage = storage or media_storage
    dispatcher = dispatcher or event_dispatcher
    kind = ContentKind(kind)

    tag = normalize_symbol_tag(symbol_tag)
    if annotation is not None:
        annotation = annotation.strip() or None
    if annotation and len(annotation) > settings.ANNOTATION_MAX_LENGTH:
        raise InvalidOperation(f"Annotation must be at most {settings.ANNOTATION_MAX_LENGTH} characters")
    _validate_media_ref(media_ref, sender_id, storage)

    created_at = utcnow()
    expires_at = created_at + (ttl if ttl is not None else timedelta(hours=settings.CONTENT_TTL_HOURS))

    if not addressing.is_broadcast:
        recipient_id = addressing.recipient_id
        if recipient_id == sender_id:
            raise InvalidOperation("Cannot send content to yourself")
        if not get_user(db, recipient_id):
            raise NotFound("Recipient not found")
        if not are_friends(db, sender_id, recipient_id):
            raise InvalidOperation("Content can only be sent to friends")

        item = ContentItem(
            id=str(uuid.uuid4()),
            kind=kind.value,
            sender_id=sender_id,
            recipient_id=recipient_id,
            media_ref=media_ref,
            annotation=annotation,
            symbol_tag=tag,
            consumed=False,
            created_at=created_at,
            expires_at=expires_at,
        )
        _write_item(db, item, dispatcher)
        logger.info(f"Created {kind.value} {item.id} from {sender_id} to {recipient_id}")
        return [item]

    broadcast_id = broadcast_id or str(uuid.uuid4())
    record = db.get(Broadcast, broadcast_id)
    if record is None:
        # Point-in-time read of the friend graph, fixed on the record
        friend_ids = sorted(list_friends(db, sender_id))
        if not friend_ids:
            logger.info(f"Broadcast {broadcast_id} from {sender_id} has no friends to reach")
            return []
        record = _record_broadcast(db, broadcast_id, sender_id, kind, media_ref, friend_ids, created_at, expires_at)
    else:
        if record.sender_id != sender_id:
            raise InvalidOperation("Broadcast id belongs to another sender")
        if record.expires_at <= utcnow():
            raise InvalidState(f"Broadcast {broadcast_id} has expired")

    # Only recipients never written; a copy its recipient deleted stays deleted
    pending = [
        row[0] for row in db.query(BroadcastRecipient.recipient_id)
        .filter(BroadcastRecipient.broadcast_id == broadcast_id, BroadcastRecipient.written == False)
        .order_by(BroadcastRecipient.recipient_id)
        .all()
    ]
    written = 0
    for friend_id in pending:
        item_id = f"{broadcast_id}_{friend_id}"
        item = ContentItem(
            id=item_id,
            kind=record.kind,
            sender_id=sender_id,
            recipient_id=friend_id,
            broadcast_id=broadcast_id,
            media_ref=record.media_ref,
            annotation=annotation,
            symbol_tag=tag,
            consumed=False,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
        try:
            _write_item(db, item, dispatcher, broadcast_id=broadcast_id)
            written += 1
        except IntegrityError:
            # A concurrent retry of the same broadcast wrote it first
            db.rollback()

    items = (
        db.query(ContentItem)
        .filter(ContentItem.broadcast_id == broadcast_id)
        .order_by(ContentItem.recipient_id)
        .all()
    )
    logger.info(
        f"Broadcast {record.kind} {broadcast_id} from {sender_id}: "
        f"{written} written now, {len(items)} live copies"
    )
    return items


def get_content_item(db: Session, item_id: str) -> Optional[ContentItem]:
    return db.get(ContentItem, item_id)


def list_inbox(db: Session, user_id: str, now: Optional[datetime] = None) -> List[ContentItem]:
    """
    Unconsumed, unexpired items addressed to user_id, newest first.

    A broadcast item stays visible only while its sender is still a friend.
    """
    now = now or utcnow()
    friend_ids = sorted(list_friends(db, user_id))
    return (
        db.query(ContentItem)
        .filter(
            ContentItem.recipient_id == user_id,
            ContentItem.consumed == False,
            # Filtered here as well as by the sweep: never visible past expiry
            ContentItem.expires_at > now,
            or_(ContentItem.broadcast_id.is_(None), ContentItem.sender_id.in_(friend_ids)),
        )
        .order_by(ContentItem.created_at.desc(), ContentItem.id)
        .all()
    )


def list_sent(db: Session, sender_id: str, now: Optional[datetime] = None) -> List[ContentItem]:
    """The sender's unexpired items, newest first"""
    now = now or utcnow()
    return (
        db.query(ContentItem)
        .filter(ContentItem.sender_id == sender_id, ContentItem.expires_at > now)
        .order_by(ContentItem.created_at.desc(), ContentItem.id)
        .all()
    )


def mark_consumed(db: Session, item_id: str, reader_id: Optional[str] = None) -> ContentItem:
    """
    Flip consumed to true. Idempotent; never flips back.

    Raises:
        NotFound: the item does not exist (already swept or deleted)
        InvalidOperation: reader_id is given and is not the recipient
    """
    item = get_content_item(db, item_id)
    if not item:
        raise NotFound("Content item not found")
    if reader_id is not None and reader_id != item.recipient_id:
        raise InvalidOperation("Only the recipient can consume this item")
    if item.consumed:
        return item

    db.query(ContentItem).filter(
        ContentItem.id == item_id,
        ContentItem.consumed == False,
    ).update({"consumed": True}, synchronize_session=False)
    db.commit()
    db.refresh(item)
    logger.info(f"Content item {item_id} consumed")
    return item


def delete_content_item(db: Session, item_id: str, acting_user_id: Optional[str] = None,
                        storage: Optional[MediaStorage] = None) -> None:
    """Delete an item, then reclaim its media once nothing references it"""
    storage = storage or media_storage
    item = get_content_item(db, item_id)
    if not item:
        raise NotFound("Content item not found")
    if acting_user_id is not None and acting_user_id not in (item.sender_id, item.recipient_id):
        raise InvalidOperation("Only the sender or recipient can delete this item")

    media_ref = item.media_ref
    db.delete(item)
    db.commit()
    logger.info(f"Deleted content item {item_id}")

    try:
        on_content_item_deleted(db, media_ref, storage=storage)
    except StorageError as e:
        # The record is gone; reclaim_orphaned_media picks the blob up later
        logger.error(f"Media {media_ref} of deleted item {item_id} left for the orphan sweep: {e}")
