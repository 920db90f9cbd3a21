from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.security import verify_access_token
from marketindex.core.storage import MediaStorage, media_storage
from marketindex.db.session import SessionLocal, get_db
from marketindex.modules.cleanup.models.cleanup_job import CleanupJob
from marketindex.modules.notifications.services.dispatcher import EventDispatcher, event_dispatcher
from marketindex.modules.user_management.models.user import User
from marketindex.modules.user_management.services.user import get_user

# OAuth2 token URL
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/firebase-signin")

def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    """
    Dependency for getting current authenticated user
    """
    user_id = verify_access_token(token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    user = get_user(db, user_id=user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user

def get_deletion_subject(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> str:
    """
    User id an account deletion applies to.

    Unlike get_current_user this still accepts a valid token once the profile
    is gone, as long as a cleanup job exists for it, so a client can repeat a
    deletion that answered 503.
    """
    user_id = verify_access_token(token)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    if get_user(db, user_id=user_id) is None and db.get(CleanupJob, user_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user_id

def get_media_storage() -> MediaStorage:
    return media_storage

def get_dispatcher() -> EventDispatcher:
    return event_dispatcher

def get_session_factory():
    """Session factory for work that opens its own sessions (cleanup steps)"""
    return SessionLocal
