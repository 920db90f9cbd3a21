"""
Content-expiry cleanup: deleting expired items and the blobs behind them.

A broadcast shares one blob across all of its sibling items, so a blob is
reclaimed only once no item references it. The reference count is taken
after the deleting transaction commits; of two concurrent last deleters at
least one sees zero references. Anything that still slips through (a crash
between record delete and blob delete, an upload never bound to an item) is
picked up by reclaim_orphaned_media.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Set
import logging

from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.exceptions import InvalidOperation
from marketindex.core.storage import CONTENT_CATEGORIES, MediaStorage, parse_media_ref
from marketindex.modules.content.models.broadcast import Broadcast, BroadcastRecipient
from marketindex.modules.content.models.content_item import ContentItem

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    items_deleted: int = 0
    media_reclaimed: int = 0
    orphans_reclaimed: int = 0
    broadcasts_closed: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_media_referenced(db: Session, media_ref: str) -> bool:
    return db.query(ContentItem.id).filter(ContentItem.media_ref == media_ref).first() is not None


def reclaim_media_if_unreferenced(db: Session, media_ref: str, storage: MediaStorage) -> bool:
    """Unbind the blob when no content item references it. True if unbound."""
    if is_media_referenced(db, media_ref):
        return False
    storage.unbind_media(media_ref)
    return True


def reclaim_media_refs(db: Session, media_refs: Iterable[str], storage: MediaStorage,
                       skip_owner: Optional[str] = None) -> int:
    reclaimed = 0
    for media_ref in sorted(set(media_refs)):
        # The owner's namespace is prefix-deleted separately during account cleanup
        if skip_owner and media_ref.split("/")[1:2] == [skip_owner]:
            continue
        if reclaim_media_if_unreferenced(db, media_ref, storage):
            reclaimed += 1
    return reclaimed


def sweep_expired_content(db: Session, storage: MediaStorage, now: Optional[datetime] = None,
                          batch_size: Optional[int] = None) -> SweepResult:
    """Delete expired items in point-in-time batches, then reclaim their media"""
    now = now or _now()
    batch_size = batch_size or settings.SWEEP_BATCH_SIZE
    result = SweepResult()

    while True:
        batch = (
            db.query(ContentItem.id, ContentItem.media_ref)
            .filter(ContentItem.expires_at <= now)
            .order_by(ContentItem.expires_at)
            .limit(batch_size)
            .all()
        )
        if not batch:
            break

        item_ids = [item_id for item_id, _ in batch]
        deleted = db.query(ContentItem).filter(ContentItem.id.in_(item_ids)).delete(synchronize_session=False)
        db.commit()
        result.items_deleted += deleted

        media_refs: Set[str] = {media_ref for _, media_ref in batch}
        result.media_reclaimed += reclaim_media_refs(db, media_refs, storage)

        if len(batch) < batch_size:
            break

    # Expired broadcasts can no longer be resumed; only the record itself is kept
    expired_ids = [row[0] for row in db.query(Broadcast.id).filter(Broadcast.expires_at <= now).all()]
    if expired_ids:
        result.broadcasts_closed = db.query(BroadcastRecipient).filter(
            BroadcastRecipient.broadcast_id.in_(expired_ids)
        ).delete(synchronize_session=False)
        db.commit()

    result.orphans_reclaimed = reclaim_orphaned_media(db, storage, now=now)
    logger.info(
        f"Expiry sweep: {result.items_deleted} items deleted, "
        f"{result.media_reclaimed} media reclaimed, {result.orphans_reclaimed} orphans reclaimed"
    )
    return result


def reclaim_orphaned_media(db: Session, storage: MediaStorage, now: Optional[datetime] = None,
                           grace: Optional[timedelta] = None) -> int:
    """Delete content blobs older than the grace period that no item references"""
    now = now or _now()
    grace = grace if grace is not None else timedelta(minutes=settings.MEDIA_ORPHAN_GRACE_MINUTES)
    cutoff = now - grace
    reclaimed = 0
    for category in CONTENT_CATEGORIES:
        for key, last_modified in list(storage.list_objects(f"{category.value}/")):
            if last_modified > cutoff:
                continue
            try:
                parse_media_ref(key)
            except InvalidOperation:
                logger.warning(f"Skipping unrecognised object {key} in {category.value}/")
                continue
            if reclaim_media_if_unreferenced(db, key, storage):
                logger.info(f"Reclaimed orphaned media {key}")
                reclaimed += 1
    return reclaimed
