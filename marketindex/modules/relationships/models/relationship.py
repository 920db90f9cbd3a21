from sqlalchemy import Column, String, DateTime, CheckConstraint
from sqlalchemy.sql import func

from marketindex.db.session import Base

RELATIONSHIP_PENDING = "pending"
RELATIONSHIP_ACCEPTED = "accepted"


def canonical_pair_key(user_a: str, user_b: str) -> str:
    """Order-independent id for the pair, so racing requests collide on one key"""
    low, high = sorted((user_a, user_b))
    return f"{low}_{high}"


# One row per unordered pair of users; the single source of truth for friendship
class Relationship(Base):
    __tablename__ = "relationships"

    id = Column(String, primary_key=True, index=True)  # canonical_pair_key(user_low, user_high)
    user_low = Column(String, index=True, nullable=False)
    user_high = Column(String, index=True, nullable=False)
    initiator_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default=RELATIONSHIP_PENDING)  # pending, accepted
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('user_low < user_high', name='ordered_distinct_pair'),
    )

    @property
    def recipient_id(self) -> str:
        """The non-initiating party"""
        return self.user_high if self.initiator_id == self.user_low else self.user_low

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_low, self.user_high)

    def other(self, user_id: str) -> str:
        return self.user_high if user_id == self.user_low else self.user_low
