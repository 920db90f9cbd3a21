from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from marketindex.db.session import Base

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    firebase_uid = Column(String, unique=True, index=True, nullable=True)
    email = Column(String, index=True, nullable=True)
    username = Column(String, unique=True, index=True, nullable=False)  # lowercase, immutable
    display_name = Column(String(24), nullable=False, default="")
    avatar_ref = Column(String, nullable=True)  # media ref in the avatars category
    push_token = Column(String, nullable=True)  # notification delivery address
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# Claimed alongside the profile in one transaction
class UsernameReservation(Base):
    __tablename__ = "usernames"

    username = Column(String, primary_key=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=func.now())
