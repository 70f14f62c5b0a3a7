"""Scheduled metric refresh for tracked posts."""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workers.celery_app import celery_app
from tracker.config import settings
from tracker.core.classifier import EntityKind
from tracker.core.database import async_session_maker, engine
from tracker.core.http_client import RetryingClient
from tracker.core.pipeline import TrackingService
from tracker.core.providers import has_post_provider
from tracker.models.tracked_item import ItemStatus, TrackedItem
from tracker.utils.async_utils import run_async
from tracker.utils.validators import ensure_utc, utcnow

logger = structlog.get_logger()

# (max post age, min hours between scrapes); older posts fall through to 168h
REFRESH_TIERS = [
    (timedelta(hours=48), timedelta(hours=6)),
    (timedelta(days=7), timedelta(hours=12)),
    (timedelta(days=30), timedelta(hours=24)),
]
OLDEST_INTERVAL = timedelta(hours=168)

REFRESHABLE_STATUSES = [ItemStatus.SCRAPED.value, ItemStatus.MANUAL.value]


def refresh_interval(item: TrackedItem, now: datetime) -> timedelta:
    reference = ensure_utc(item.posted_at) or ensure_utc(item.created_at) or now
    age = now - reference
    for max_age, interval in REFRESH_TIERS:
        if age <= max_age:
            return interval
    return OLDEST_INTERVAL


def is_refresh_due(item: TrackedItem, now: Optional[datetime] = None) -> bool:
    """Younger posts are refreshed more often; never-scraped posts are always due."""
    now = now or utcnow()
    last_scraped = ensure_utc(item.last_scraped_at)
    if last_scraped is None:
        return True
    return now - last_scraped >= refresh_interval(item, now)


async def select_due_items(
    session: AsyncSession,
    now: Optional[datetime] = None,
    limit: Optional[int] = None
) -> List[TrackedItem]:
    """Posts due for a refresh, least recently scraped first."""
    now = now or utcnow()
    limit = limit or settings.refresh_batch_size

    result = await session.execute(
        select(TrackedItem)
        .where(
            TrackedItem.kind == EntityKind.POST.value,
            TrackedItem.status.in_(REFRESHABLE_STATUSES),
        )
    )
    candidates = [
        item for item in result.scalars().all()
        if has_post_provider(item.platform) and is_refresh_due(item, now)
    ]
    # Never-scraped first, then oldest scrape
    candidates.sort(key=lambda item: (
        item.last_scraped_at is not None,
        ensure_utc(item.last_scraped_at) or now,
    ))
    return candidates[:limit]


async def refresh_due_items(
    session: AsyncSession,
    http: RetryingClient,
    limit: Optional[int] = None
) -> dict:
    """Re-scrape due posts one by one; a failing post does not stop the batch."""
    items = await select_due_items(session, limit=limit)
    summary = await TrackingService(session, http).rescrape_many([item.id for item in items])

    logger.info("Scheduled refresh finished", **summary)
    return summary


@celery_app.task(bind=True, name="tracking.refresh_stale_items")
def refresh_stale_items(self, batch_size: Optional[int] = None):
    """
    Periodic task: refresh metrics of tracked posts.

    Failed items are left alone; only an explicit re-scrape retries them.
    """

    async def _process():
        try:
            async with async_session_maker() as session:
                async with RetryingClient() as http:
                    return await refresh_due_items(session, http, limit=batch_size)
        finally:
            await engine.dispose()

    return run_async(_process())
