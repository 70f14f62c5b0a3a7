"""Database models package"""

from tracker.models.tracked_item import TrackedItem, ItemStatus
from tracker.models.child_observation import ChildObservation
from tracker.models.job_transition import JobTransition
from tracker.models.campaign_item import CampaignItem

__all__ = [
    "TrackedItem",
    "ItemStatus",
    "ChildObservation",
    "JobTransition",
    "CampaignItem"
]
