from sqlalchemy import Column, String, DateTime, Boolean, Text
from sqlalchemy.sql import func

from marketindex.db.session import Base

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True)  # Recipient of the notification
    actor_id = Column(String, index=True, nullable=True)  # The user who triggered the notification
    type = Column(String)  # friend_requested, friend_accepted, content_received
    content = Column(Text)
    related_id = Column(String, nullable=True)  # relationship or content item id
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())
