"""Authentication router for Firebase sign-in"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Dict, Any

from marketindex.db.session import get_db
from marketindex.deps import get_current_user
from marketindex.modules.auth.schemas.auth import Token, FirebaseSignInRequest
from marketindex.modules.auth.services.firebase_auth import authenticate_with_firebase
from marketindex.modules.user_management.models.user import User

router = APIRouter()

@router.post("/firebase-signin", response_model=Token)
def firebase_signin(
    *,
    db: Session = Depends(get_db),
    signin: FirebaseSignInRequest
) -> Any:
    """Authenticate with a Firebase ID token, creating the profile on first sign-in"""
    success, result = authenticate_with_firebase(db, signin)

    if not success:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.get("error", "Authentication failed"),
            headers={"WWW-Authenticate": "Bearer"},
        )

    return result

@router.get("/validate-token", response_model=Dict[str, Any])
def validate_token(current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    """Validate the current user's token and return user information"""
    return {
        "valid": True,
        "user_id": current_user.id,
        "username": current_user.username,
    }
