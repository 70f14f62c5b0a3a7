"""Campaign link table model"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, Uuid

from tracker.core.database import Base
from tracker.utils.validators import utcnow


class CampaignItem(Base):
    """Binds a tracked item to a campaign"""
    __tablename__ = "campaign_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(255), nullable=False, index=True)
    item_id = Column(
        Uuid,
        ForeignKey("tracked_items.id", ondelete="CASCADE"),
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_campaign_item", "campaign_id", "item_id", unique=True),
    )
