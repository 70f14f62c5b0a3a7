"""Pydantic schemas package"""

from tracker.schemas.tracking import (
    SubmitRequest,
    TrackingResponse,
    ItemStatusResponse,
    TransitionResponse,
    ObservationResponse,
    ResetRequest,
    ScrapeSummaryResponse,
    Metrics,
    GeoEntry
)
from tracker.schemas.webhook import WebhookPayload, WebhookAck

__all__ = [
    "SubmitRequest",
    "TrackingResponse",
    "ItemStatusResponse",
    "TransitionResponse",
    "ObservationResponse",
    "ResetRequest",
    "ScrapeSummaryResponse",
    "Metrics",
    "GeoEntry",
    "WebhookPayload",
    "WebhookAck"
]
