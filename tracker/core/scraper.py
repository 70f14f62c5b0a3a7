"""Synchronous scrape jobs: single posts and inline sound indexing."""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import settings
from tracker.core.errors import TrackingError
from tracker.core.http_client import RetryingClient
from tracker.core.lifecycle import JobLifecycleManager, MetricsSnapshot
from tracker.core.observations import finalize_index
from tracker.core.providers import get_post_provider, get_sound_provider
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace

logger = structlog.get_logger()


class PostScraper:
    """Scrapes one post's metrics and finishes its run."""

    def __init__(self, session: AsyncSession, http: RetryingClient):
        self.session = session
        self.http = http
        self.lifecycle = JobLifecycleManager(session, component="scraper")

    async def scrape(self, item: TrackedItem, trace: DebugTrace) -> TrackedItem:
        """
        Fetch metrics for an item already in ``scraping``.

        On any provider error the item is marked failed and the error is
        re-raised for the caller.
        """
        try:
            provider = get_post_provider(item.platform, self.http)
            metrics = await provider.fetch_metrics(item.canonical_key, item.source_url, trace)
        except TrackingError as exc:
            trace.log("scrape_failed", {"error": exc.code, "detail": exc.message})
            await self.lifecycle.fail(item.id, reason=exc.message, debug_trace=trace.to_list())
            raise

        snapshot = MetricsSnapshot(
            views=metrics.views,
            likes=metrics.likes,
            comments=metrics.comments,
            shares=metrics.shares,
            engagement_rate=metrics.engagement_rate,
        )
        values = {}
        if metrics.owner_handle:
            values["owner_handle"] = metrics.owner_handle
        if metrics.posted_at:
            values["posted_at"] = metrics.posted_at
        trace.log("scrape_succeeded", snapshot.to_values())
        values["debug_trace"] = trace.to_list()

        logger.info(
            "Post scraped",
            item_id=str(item.id),
            platform=item.platform,
            views=metrics.views,
            engagement_rate=metrics.engagement_rate
        )
        return await self.lifecycle.complete(item.id, snapshot, reason="scrape succeeded", values=values)


class InlineSoundIndexer:
    """Indexes a sound's videos in-process for platforms without an orchestrator actor."""

    def __init__(self, session: AsyncSession, http: RetryingClient):
        self.session = session
        self.http = http
        self.lifecycle = JobLifecycleManager(session, component="inline_indexer")

    async def index(self, item: TrackedItem, trace: DebugTrace) -> TrackedItem:
        try:
            provider = get_sound_provider(item.platform, self.http)
            rows = await provider.list_observations(item.canonical_key, settings.index_result_cap, trace)
        except TrackingError as exc:
            trace.log("index_failed", {"error": exc.code, "detail": exc.message})
            await self.lifecycle.fail(item.id, reason=exc.message, debug_trace=trace.to_list())
            raise

        return await finalize_index(
            self.session,
            item,
            provider,
            rows,
            component="inline_indexer",
            trace=trace,
        )
