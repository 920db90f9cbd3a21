from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.sql import func

from marketindex.db.session import Base

class Group(Base):
    __tablename__ = "groups"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=func.now())


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, primary_key=True, index=True)
    joined_at = Column(DateTime, default=func.now())


class GroupMessage(Base):
    __tablename__ = "group_messages"

    id = Column(String, primary_key=True, index=True)
    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), index=True, nullable=False)
    sender_id = Column(String, index=True, nullable=False)
    text = Column(Text, nullable=False)
    # Stamped by the service so ordering never depends on database clock precision
    created_at = Column(DateTime, nullable=False)
