from typing import Any, Dict, List
import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from marketindex.core.storage import MediaStorage
from marketindex.db.session import get_db
from marketindex.deps import get_current_user, get_deletion_subject, get_media_storage, get_session_factory
from marketindex.modules.cleanup.triggers import on_account_deleted
from marketindex.modules.user_management.models.user import User
from marketindex.modules.user_management.schemas.user import User as UserSchema, UserMe, UserUpdate
from marketindex.modules.user_management.services.user import (
    get_user,
    get_user_by_username,
    search_users as search_user_profiles,
    update_user,
)

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/me", response_model=UserMe)
def read_user_me(
    current_user: User = Depends(get_current_user),
) -> Any:
    """Get current user"""
    return current_user

@router.put("/me", response_model=UserMe)
def update_user_me(
    *,
    db: Session = Depends(get_db),
    user_in: UserUpdate,
    current_user: User = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
) -> Any:
    """Update current user"""
    return update_user(db, current_user, user_in, storage=storage)

@router.delete("/me", response_model=Dict[str, Any])
def delete_user_me(
    *,
    user_id: str = Depends(get_deletion_subject),
    session_factory=Depends(get_session_factory),
    storage: MediaStorage = Depends(get_media_storage),
) -> Any:
    """
    Delete the account and everything it owns.

    Responds 503 when a cleanup step fails. The job is recorded and retried
    by the background worker; the same token can also repeat this call
    until it answers 200, even though the profile is already gone.
    """
    report = on_account_deleted(user_id, session_factory=session_factory, storage=storage)
    report.raise_for_failure()
    return {"message": "Account deleted", "user_id": user_id, "state": report.state.value}

@router.get("/by-username/{username}", response_model=UserSchema)
def read_user_by_username(
    username: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    """Get a specific user by username"""
    user = get_user_by_username(db, username=username)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user

@router.get("/search", response_model=List[UserSchema])
def search_users(
    *,
    db: Session = Depends(get_db),
    q: str = Query(..., min_length=2, description="Search query for display name or username"),
    limit: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
) -> Any:
    return search_user_profiles(db, q, exclude_user_id=current_user.id, limit=limit)

@router.get("/{user_id}", response_model=UserSchema)
def read_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Any:
    user = get_user(db, user_id=user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user
