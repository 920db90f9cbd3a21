"""Firebase authentication service: verifies ID tokens and provisions profiles"""
import logging
import os
from typing import Any, Dict, Optional, Tuple

import firebase_admin
from firebase_admin import auth, credentials
from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.security import create_access_token
from marketindex.modules.auth.schemas.auth import FirebaseSignInRequest
from marketindex.modules.user_management.services.user import create_user_profile, get_user_by_firebase_uid

logger = logging.getLogger(__name__)

# Firebase initialization state
_firebase_initialized = False
_firebase_init_attempts = 0
_firebase_max_attempts = 3

DEV_TEST_TOKEN = "test_firebase_token"

def initialize_firebase() -> bool:
    """Initialize the Firebase app on first use, giving up after a few failed attempts"""
    global _firebase_initialized, _firebase_init_attempts

    if _firebase_initialized:
        return True

    if _firebase_init_attempts >= _firebase_max_attempts:
        logger.error(f"Failed to initialize Firebase after {_firebase_max_attempts} attempts")
        return False

    _firebase_init_attempts += 1

    try:
        service_account_path = settings.FIREBASE_SERVICE_ACCOUNT_PATH
        if os.path.exists(service_account_path):
            cred = credentials.Certificate(service_account_path)
            firebase_admin.initialize_app(cred)
            logger.info(f"Firebase initialized with service account from {service_account_path}")
        else:
            firebase_admin.initialize_app()
            logger.warning("Firebase initialized without explicit credentials")

        _firebase_initialized = True
        return True
    except (ValueError, IOError) as e:
        logger.error(f"Failed to initialize Firebase (attempt {_firebase_init_attempts}): {e}")
        return False

def verify_firebase_token(token: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
    """Verifies a Firebase ID token and extracts the identity claims"""
    # Development mode test token
    if settings.ENVIRONMENT == "development" and token == DEV_TEST_TOKEN:
        logger.warning("DEVELOPMENT MODE: Using test Firebase token")
        return True, {
            "uid": "test_user_id",
            "email": "test@example.com",
            "name": "Test User",
        }

    if not initialize_firebase():
        logger.error("Cannot verify token: Firebase not initialized")
        return False, None

    try:
        logger.info(f"Verifying Firebase token, length: {len(token) if token else 0}")
        decoded_token = auth.verify_id_token(token)
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError, auth.CertificateFetchError) as e:
        logger.error(f"Firebase token verification failed: {type(e).__name__}: {e}")
        return False, None

    logger.info(f"Firebase token verified for uid: {decoded_token.get('uid')}")
    return True, {
        "uid": decoded_token.get("uid"),
        "email": decoded_token.get("email"),
        "name": decoded_token.get("name"),
    }

def authenticate_with_firebase(db: Session, signin: FirebaseSignInRequest) -> Tuple[bool, Dict[str, Any]]:
    """
    Exchange a Firebase ID token for a service bearer token.

    The first sign-in for a Firebase uid provisions a profile and reserves its
    username; later sign-ins reuse that profile.
    """
    success, identity = verify_firebase_token(signin.firebase_token)
    if not success or not identity or not identity.get("uid"):
        return False, {"error": "Invalid Firebase token"}

    user = get_user_by_firebase_uid(db, identity["uid"])
    is_new_user = user is None
    if is_new_user:
        user = create_user_profile(
            db,
            firebase_uid=identity["uid"],
            email=identity.get("email"),
            display_name=signin.display_name or identity.get("name"),
        )

    access_token = create_access_token(user.id)
    logger.info(f"Firebase sign-in successful for user ID: {user.id} (new: {is_new_user})")
    return True, {
        "access_token": access_token,
        "token_type": "bearer",
        "user_id": user.id,
        "is_new_user": is_new_user,
    }
