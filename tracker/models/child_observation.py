"""Child observation database model"""

from sqlalchemy import Column, String, Text, BigInteger, Float, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
import uuid

from tracker.core.database import Base, JSONType
from tracker.utils.validators import utcnow


class ChildObservation(Base):
    """Videos attributed to a tracked sound, written only by completed runs"""
    __tablename__ = "child_observations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    parent_id = Column(
        Uuid,
        ForeignKey("tracked_items.id", ondelete="CASCADE"),
        nullable=False
    )
    platform = Column(String(20), nullable=False)
    external_video_id = Column(String(255), nullable=False)

    video_url = Column(Text, nullable=True)
    creator_handle = Column(String(255), nullable=True, index=True)
    creator_name = Column(String(255), nullable=True)

    views = Column(BigInteger, nullable=False, default=0)
    likes = Column(BigInteger, nullable=False, default=0)
    comments = Column(BigInteger, nullable=False, default=0)
    shares = Column(BigInteger, nullable=False, default=0)
    engagement_rate = Column(Float, nullable=False, default=0.0)

    region = Column(String(8), nullable=True)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    correlation_handle = Column(String(255), nullable=True)
    raw_data = Column(JSONType, nullable=True)

    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    observed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    parent = relationship("TrackedItem", back_populates="observations")

    __table_args__ = (
        Index("idx_parent_external_video", "parent_id", "external_video_id", unique=True),
        Index("idx_parent_views", "parent_id", "views"),
    )

    def __repr__(self):
        return f"<ChildObservation {self.platform}:{self.external_video_id}>"
