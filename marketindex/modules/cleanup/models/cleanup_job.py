from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func

from marketindex.db.session import Base


class CleanupState(str, Enum):
    TRIGGERED = "triggered"
    PROFILE_REMOVING = "profile_removing"
    GRAPH_CLEANING = "graph_cleaning"
    CONTENT_PURGING = "content_purging"
    STORAGE_RECLAIMING = "storage_reclaiming"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"


# One row per deleted account; kept after Done as an audit trail
class CleanupJob(Base):
    __tablename__ = "cleanup_jobs"

    user_id = Column(String, primary_key=True)
    username = Column(String, nullable=True)  # captured before the profile disappears
    state = Column(String, nullable=False, default=CleanupState.TRIGGERED.value)
    completed_steps = Column(Text, nullable=False, default="")  # comma separated
    failed_steps = Column(Text, nullable=False, default="")
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
