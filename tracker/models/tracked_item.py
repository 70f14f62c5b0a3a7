"""Tracked item database model"""

from sqlalchemy import Column, String, Text, Integer, BigInteger, Float, DateTime, Index, Uuid
from sqlalchemy.orm import relationship
import uuid
import enum

from tracker.core.database import Base, JSONType
from tracker.utils.validators import utcnow


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    # Sound lifecycle
    INDEXING = "indexing"
    ACTIVE = "active"
    # Post lifecycle
    MANUAL = "manual"
    SCRAPING = "scraping"
    SCRAPED = "scraped"
    FAILED = "failed"


class TrackedItem(Base):
    """Tracked items table: one row per canonical sound or post"""
    __tablename__ = "tracked_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(String(20), nullable=False, index=True)
    platform = Column(String(20), nullable=False)
    canonical_key = Column(String(255), nullable=False)

    owner_handle = Column(String(255), nullable=True)
    title = Column(Text, nullable=True)
    artist = Column(String(255), nullable=True)
    source_url = Column(Text, nullable=True)
    page_url = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=ItemStatus.PENDING.value)

    # Last known metrics snapshot, replaced wholesale on each completed run
    views = Column(BigInteger, nullable=False, default=0)
    likes = Column(BigInteger, nullable=False, default=0)
    comments = Column(BigInteger, nullable=False, default=0)
    shares = Column(BigInteger, nullable=False, default=0)
    engagement_rate = Column(Float, nullable=False, default=0.0)
    observation_count = Column(Integer, nullable=False, default=0)
    geo_distribution = Column(JSONType, nullable=True)

    # Current run
    correlation_handle = Column(String(255), nullable=True, index=True)
    job_started_at = Column(DateTime(timezone=True), nullable=True)
    debug_trace = Column(JSONType, nullable=True)

    posted_at = Column(DateTime(timezone=True), nullable=True)
    last_scraped_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    observations = relationship(
        "ChildObservation",
        back_populates="parent",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index("idx_platform_canonical_key", "platform", "canonical_key", unique=True),
        Index("idx_status_updated", "status", "updated_at"),
    )

    @property
    def metrics(self) -> dict:
        return {
            "views": self.views or 0,
            "likes": self.likes or 0,
            "comments": self.comments or 0,
            "shares": self.shares or 0,
            "engagement_rate": self.engagement_rate or 0.0,
        }

    def __repr__(self):
        return f"<TrackedItem {self.platform}:{self.canonical_key} ({self.status})>"
