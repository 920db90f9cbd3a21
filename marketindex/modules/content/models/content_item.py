from sqlalchemy import Boolean, Column, String, DateTime, Text, Index

from marketindex.db.session import Base

# A tip, signal, snap or story addressed to exactly one recipient.
# Broadcasts are materialized at write time into one row per friend that
# share a broadcast_id and a media_ref.
class ContentItem(Base):
    __tablename__ = "content_items"

    id = Column(String, primary_key=True, index=True)
    kind = Column(String, nullable=False)  # tip, signal, snap, story
    sender_id = Column(String, index=True, nullable=False)
    recipient_id = Column(String, index=True, nullable=False)
    broadcast_id = Column(String, index=True, nullable=True)
    media_ref = Column(String, index=True, nullable=False)
    annotation = Column(Text, nullable=True)
    symbol_tag = Column(String(5), nullable=True)
    consumed = Column(Boolean, nullable=False, default=False)
    # Both stamped by the service at write time, never defaulted by the database
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)

    __table_args__ = (
        Index("ix_content_items_inbox", "recipient_id", "consumed", "expires_at"),
    )
