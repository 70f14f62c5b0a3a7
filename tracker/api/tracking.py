"""Tracking API endpoints"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import desc, select
from typing import List, Literal, Optional
import structlog

from tracker.api.deps import get_tracking_service
from tracker.core.pipeline import TrackingResult, TrackingService
from tracker.models.child_observation import ChildObservation
from tracker.schemas.tracking import (
    ItemStatusResponse,
    ObservationResponse,
    ResetRequest,
    ScrapeSummaryResponse,
    SubmitRequest,
    TrackingResponse,
    TransitionResponse,
)
from tracker.utils.job_logger import get_transitions

router = APIRouter()
logger = structlog.get_logger()


def _tracking_response(result: TrackingResult) -> TrackingResponse:
    item = result.item
    return TrackingResponse(
        tracked_item_id=item.id,
        platform=item.platform,
        kind=item.kind,
        status=item.status,
        correlation_handle=result.correlation_handle or item.correlation_handle,
        debug_trace=result.debug_trace,
    )


@router.post("/items", response_model=TrackingResponse, status_code=status.HTTP_201_CREATED)
async def submit_item(
    request: SubmitRequest,
    service: TrackingService = Depends(get_tracking_service)
):
    """Submit a sound or post URL for tracking"""
    logger.info("Tracking submission", url=request.url, kind=request.kind)
    result = await service.submit(request.url, request.kind, request.campaign_id)
    return _tracking_response(result)


@router.post("/items/{item_id}/scrape", response_model=TrackingResponse)
async def rescrape_item(
    item_id: str,
    service: TrackingService = Depends(get_tracking_service)
):
    """Force a fresh run; rejected while one is in flight"""
    result = await service.rescrape(item_id)
    return _tracking_response(result)


@router.get("/items/{item_id}", response_model=ItemStatusResponse)
async def get_item_status(
    item_id: str,
    service: TrackingService = Depends(get_tracking_service)
):
    """Status and metrics, polled by clients"""
    item = await service.get(item_id)
    return ItemStatusResponse.from_item(item)


@router.post("/items/{item_id}/reset", response_model=ItemStatusResponse)
async def reset_item(
    item_id: str,
    request: Optional[ResetRequest] = None,
    service: TrackingService = Depends(get_tracking_service)
):
    """Return a stuck in-flight item to pending"""
    reason = request.reason if request else "stuck job reset"
    item = await service.reset(item_id, reason=reason)
    logger.info("Item reset", item_id=str(item.id), reason=reason)
    return ItemStatusResponse.from_item(item)


@router.get("/items/{item_id}/transitions", response_model=List[TransitionResponse])
async def list_transitions(
    item_id: str,
    service: TrackingService = Depends(get_tracking_service)
):
    """Audit log of status changes, oldest first"""
    item = await service.get(item_id)
    return await get_transitions(service.session, item.id)


@router.get("/items/{item_id}/observations", response_model=List[ObservationResponse])
async def list_observations(
    item_id: str,
    sort: Literal["views", "recent"] = Query("views"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    service: TrackingService = Depends(get_tracking_service)
):
    """Videos attributed to a tracked sound"""
    item = await service.get(item_id)
    order = (
        desc(ChildObservation.views)
        if sort == "views"
        else desc(ChildObservation.posted_at)
    )
    query = (
        select(ChildObservation)
        .where(ChildObservation.parent_id == item.id)
        .order_by(order, ChildObservation.external_video_id)
        .offset(skip)
        .limit(limit)
    )
    result = await service.session.execute(query)
    return result.scalars().all()


@router.post("/campaigns/{campaign_id}/scrape", response_model=ScrapeSummaryResponse)
async def scrape_campaign(
    campaign_id: str,
    service: TrackingService = Depends(get_tracking_service)
):
    """Re-scrape every post linked to a campaign; posts already running are skipped"""
    summary = await service.scrape_campaign(campaign_id)
    return ScrapeSummaryResponse(campaign_id=campaign_id, **summary)
