from typing import Optional
from pydantic import BaseModel, field_validator

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: Optional[str] = None
    is_new_user: bool = False

class TokenPayload(BaseModel):
    sub: Optional[str] = None

class FirebaseSignInRequest(BaseModel):
    firebase_token: str
    display_name: Optional[str] = None

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None
