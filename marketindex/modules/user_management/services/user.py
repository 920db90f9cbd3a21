from typing import List, Optional
import re
import uuid
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.exceptions import AlreadyExists, InvalidOperation, NotFound
from marketindex.core.storage import MediaCategory, MediaStorage, media_storage, parse_media_ref
from marketindex.modules.user_management.models.user import User, UsernameReservation
from marketindex.modules.user_management.schemas.user import UserUpdate

logger = logging.getLogger(__name__)

MAX_USERNAME_ATTEMPTS = 20

def get_user(db: Session, user_id: str) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()

def get_user_by_firebase_uid(db: Session, firebase_uid: str) -> Optional[User]:
    return db.query(User).filter(User.firebase_uid == firebase_uid).first()

def get_user_by_username(db: Session, username: str) -> Optional[User]:
    """Get user by username (case-insensitive)"""
    return db.query(User).filter(User.username == username.lower()).first()

def search_users(db: Session, q: str, exclude_user_id: Optional[str] = None, limit: int = 20) -> List[User]:
    """Prefix search on display name or username"""
    term = q.strip()
    if not term:
        return []
    pattern = f"{term}%"
    query = db.query(User).filter(
        or_(User.display_name.ilike(pattern), User.username.ilike(pattern.lower()))
    )
    if exclude_user_id:
        query = query.filter(User.id != exclude_user_id)
    return query.order_by(User.username).limit(limit).all()

def derive_username_base(email: Optional[str]) -> str:
    local_part = (email or "").split("@")[0].lower()
    base = re.sub(r"[^a-z0-9._]", "", local_part)
    return base or "user"

def create_user_profile(db: Session, firebase_uid: Optional[str], email: Optional[str],
                        display_name: Optional[str] = None) -> User:
    """
    Create a profile and claim its username atomically.

    The profile row and the username reservation are committed together; a
    collision on either unique key rolls both back and the next suffix is tried.
    """
    base = derive_username_base(email)
    display_name = (display_name or base)[:settings.DISPLAY_NAME_MAX_LENGTH]

    for attempt in range(MAX_USERNAME_ATTEMPTS):
        username = base if attempt == 0 else f"{base}{attempt}"
        if db.get(UsernameReservation, username):
            continue

        user_id = str(uuid.uuid4())
        db.add(User(
            id=user_id,
            firebase_uid=firebase_uid,
            email=email,
            username=username,
            display_name=display_name,
        ))
        db.add(UsernameReservation(username=username, user_id=user_id))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # A concurrent sign-up may have claimed this firebase uid already
            if firebase_uid:
                existing = get_user_by_firebase_uid(db, firebase_uid)
                if existing:
                    return existing
            logger.info(f"Username {username} taken during sign-up, trying next")
            continue

        user = get_user(db, user_id)
        logger.info(f"Created profile {user_id} with username {username}")
        return user

    raise AlreadyExists(f"Could not reserve a username derived from {base!r}")

def update_user(db: Session, user: User, user_in: UserUpdate, storage: Optional[MediaStorage] = None) -> User:
    """Update user"""
    storage = storage or media_storage
    db_user = get_user(db, user.id)
    if not db_user:
        raise NotFound(f"User with ID {user.id} not found")

    update_data = user_in.model_dump(exclude_unset=True)

    avatar_ref = update_data.get("avatar_ref")
    if avatar_ref:
        category, owner_id, _ = parse_media_ref(avatar_ref)
        if category != MediaCategory.AVATARS or owner_id != db_user.id:
            raise InvalidOperation("Avatar must be uploaded to your own avatars namespace")
        if not storage.exists(avatar_ref):
            raise NotFound(f"Media {avatar_ref} not found")

    # Apply all updates at once
    for field, value in update_data.items():
        setattr(db_user, field, value)

    db.commit()
    db.refresh(db_user)

    return db_user
