"""Tracking Pydantic schemas"""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Any, Dict
from datetime import datetime
from uuid import UUID


class SubmitRequest(BaseModel):
    """Schema for submitting a URL for tracking"""
    url: str = Field(..., min_length=1, max_length=2048)
    kind: Literal["sound", "post"] = "sound"
    campaign_id: Optional[str] = Field(default=None, alias="campaignId", max_length=255)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "url": "https://www.tiktok.com/music/Example-1234567890123456789",
                "kind": "sound",
                "campaignId": "spring-launch"
            }
        }


class Metrics(BaseModel):
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    engagement_rate: float = 0.0


class GeoEntry(BaseModel):
    country: str
    code: Optional[str] = None
    percent: float


class TrackingResponse(BaseModel):
    """Returned by submit and re-scrape"""
    tracked_item_id: UUID
    platform: str
    kind: str
    status: str
    correlation_handle: Optional[str] = None
    debug_trace: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "tracked_item_id": "123e4567-e89b-12d3-a456-426614174000",
                "platform": "tiktok",
                "kind": "sound",
                "status": "indexing",
                "correlation_handle": "run_abc",
                "debug_trace": [
                    {"step": "classified", "data": {"platform": "tiktok"}, "at": "2024-01-15T10:00:00+00:00"}
                ]
            }
        }


class ItemStatusResponse(BaseModel):
    """Schema for the status/metrics read polled by clients"""
    tracked_item_id: UUID
    kind: str
    platform: str
    canonical_key: str
    status: str
    metrics: Metrics
    title: Optional[str] = None
    artist: Optional[str] = None
    owner_handle: Optional[str] = None
    page_url: Optional[str] = None
    observation_count: int = 0
    geo_distribution: List[GeoEntry] = Field(default_factory=list)
    last_scraped_at: Optional[datetime] = None
    updated_at: datetime
    created_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "tracked_item_id": "123e4567-e89b-12d3-a456-426614174000",
                "kind": "sound",
                "platform": "tiktok",
                "canonical_key": "1234567890123456789",
                "status": "active",
                "metrics": {
                    "views": 1200000,
                    "likes": 98000,
                    "comments": 1200,
                    "shares": 800,
                    "engagement_rate": 8.33
                },
                "observation_count": 42,
                "geo_distribution": [{"country": "United States", "code": "US", "percent": 60.0}],
                "last_scraped_at": "2024-01-15T10:05:00Z",
                "updated_at": "2024-01-15T10:05:00Z",
                "created_at": "2024-01-15T10:00:00Z"
            }
        }

    @classmethod
    def from_item(cls, item) -> "ItemStatusResponse":
        return cls(
            tracked_item_id=item.id,
            kind=item.kind,
            platform=item.platform,
            canonical_key=item.canonical_key,
            status=item.status,
            metrics=Metrics(**item.metrics),
            title=item.title,
            artist=item.artist,
            owner_handle=item.owner_handle,
            page_url=item.page_url,
            observation_count=item.observation_count or 0,
            geo_distribution=item.geo_distribution or [],
            last_scraped_at=item.last_scraped_at,
            updated_at=item.updated_at,
            created_at=item.created_at,
        )


class TransitionResponse(BaseModel):
    component: str
    from_state: Optional[str] = None
    to_state: str
    reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ObservationResponse(BaseModel):
    """Schema for a video attributed to a tracked sound"""
    id: UUID
    external_video_id: str
    video_url: Optional[str] = None
    creator_handle: Optional[str] = None
    creator_name: Optional[str] = None
    views: int
    likes: int
    comments: int
    shares: int
    engagement_rate: float
    region: Optional[str] = None
    posted_at: Optional[datetime] = None
    observed_at: datetime

    class Config:
        from_attributes = True


class ResetRequest(BaseModel):
    reason: str = Field(default="stuck job reset", max_length=255)


class ScrapeSummaryResponse(BaseModel):
    """Counts from a campaign-wide re-scrape"""
    campaign_id: str
    due: int
    refreshed: int
    failed: int
    skipped: int = 0
