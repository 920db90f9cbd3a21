"""
Change-notification hooks.

Delivery is at-least-once, so every hook is idempotent: running one twice
leaves the same state as running it once.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from marketindex.core.storage import MediaStorage, media_storage
from marketindex.db.session import SessionLocal
from marketindex.modules.cleanup.services.media_reclaim import reclaim_media_if_unreferenced
from marketindex.modules.notifications.services.dispatcher import EventDispatcher, event_dispatcher

logger = logging.getLogger(__name__)


def on_content_item_deleted(db: Session, media_ref: str, storage: Optional[MediaStorage] = None) -> bool:
    """Reclaim the item's blob once no other item references it. A missing blob is a success."""
    return reclaim_media_if_unreferenced(db, media_ref, storage or media_storage)


def on_relationship_changed(event, dispatcher: Optional[EventDispatcher] = None) -> int:
    """Fan a committed FriendRequested / FriendAccepted out to subscribers"""
    return (dispatcher or event_dispatcher).dispatch(event)


def on_account_deleted(user_id: str, session_factory: Callable[[], Session] = SessionLocal,
                       storage: Optional[MediaStorage] = None):
    """Run the account cleanup job and return its CleanupReport"""
    # orchestrator -> relationships service -> this module
    from marketindex.modules.cleanup.services.orchestrator import run_account_cleanup

    logger.info(f"Account deleted: {user_id}")
    return run_account_cleanup(user_id, session_factory=session_factory, storage=storage)
