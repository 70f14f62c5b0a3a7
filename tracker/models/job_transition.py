"""Job transition audit log model"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, Uuid

from tracker.core.database import Base
from tracker.utils.validators import utcnow


class JobTransition(Base):
    """Append-only log of item status changes"""
    __tablename__ = "job_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(
        Uuid,
        ForeignKey("tracked_items.id", ondelete="CASCADE"),
        nullable=False
    )
    component = Column(String(50), nullable=False)
    from_state = Column(String(20), nullable=True)
    to_state = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_transition_item_created", "item_id", "created_at"),
    )

    def __repr__(self):
        return f"<JobTransition {self.item_id} {self.from_state}->{self.to_state}>"
