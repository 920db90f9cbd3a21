from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey

from marketindex.db.session import Base

# The record of a fan-out. Written once, before the first item, with the
# recipient set fixed at that moment. It outlives its items so a retried
# broadcast_id can never start a new fan-out.
class Broadcast(Base):
    __tablename__ = "broadcasts"

    id = Column(String, primary_key=True, index=True)
    sender_id = Column(String, index=True, nullable=False)
    kind = Column(String, nullable=False)
    media_ref = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)


# One row per recipient of a broadcast; written flips in the same commit as
# that recipient's item and never flips back.
class BroadcastRecipient(Base):
    __tablename__ = "broadcast_recipients"

    broadcast_id = Column(String, ForeignKey("broadcasts.id", ondelete="CASCADE"), primary_key=True)
    recipient_id = Column(String, primary_key=True, index=True)
    written = Column(Boolean, nullable=False, default=False)
