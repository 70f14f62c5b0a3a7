"""Tracking pipeline: submit, re-scrape, read and reset tracked items."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import Settings, settings as default_settings
from tracker.core.classifier import EntityKind, classify
from tracker.core.dispatcher import AsyncJobDispatcher
from tracker.core.errors import InvalidTransition, JobAlreadyInFlight, TrackingError
from tracker.core.http_client import RetryingClient
from tracker.core.lifecycle import JobLifecycleManager, lifecycle_for
from tracker.core.providers import get_post_provider, has_post_provider
from tracker.core.resolver import CanonicalEntityResolver
from tracker.core.scraper import InlineSoundIndexer, PostScraper
from tracker.models.campaign_item import CampaignItem
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace

logger = structlog.get_logger()


@dataclass
class TrackingResult:
    item: TrackedItem
    debug_trace: List[Dict[str, Any]] = field(default_factory=list)
    correlation_handle: Optional[str] = None


class TrackingService:
    """
    Request-scoped entry point to the pipeline.

    Flow for a submission: classify -> resolve -> upsert -> claim (written
    before any provider call for direct identifiers) -> scrape inline,
    index inline, or dispatch to the orchestrator.
    """

    def __init__(self, session: AsyncSession, http: RetryingClient, settings: Optional[Settings] = None):
        self.session = session
        self.http = http
        self.settings = settings or default_settings
        self.lifecycle = JobLifecycleManager(session, component="pipeline")
        self.resolver = CanonicalEntityResolver(session, http)

    async def submit(
        self,
        url: str,
        kind: Union[str, EntityKind] = EntityKind.SOUND,
        campaign_id: Optional[str] = None
    ) -> TrackingResult:
        """
        Track a URL and start its first run.

        Raises:
            UnsupportedPlatform, UnresolvableIdentifier: bad input
            UpstreamUnavailable, SubmissionFailed: try again later
            JobAlreadyInFlight: a run is already in progress
        """
        trace = DebugTrace()
        classification = classify(url, EntityKind(kind))
        if not classification.ok:
            logger.info("URL rejected", url=classification.url, reason=classification.message)
            raise classification.to_exception()

        identity = await self.resolver.resolve(classification, trace)
        item = await self.resolver.upsert(identity)
        if campaign_id:
            await self.resolver.link_campaign(item.id, campaign_id)

        if item.kind == EntityKind.POST.value and not has_post_provider(item.platform):
            trace.log("manual_tracking", {"platform": item.platform})
            logger.info("Post tracked manually", item_id=str(item.id), platform=item.platform)
            return TrackingResult(item, trace.to_list())

        item = await self.lifecycle.start(
            item.id,
            reason="submitted",
            debug_trace=trace.to_list(),
            values=identity.refresh_values(),
        )
        return await self._run(item, trace)

    async def rescrape(self, item_id: Union[str, uuid.UUID]) -> TrackingResult:
        """Start a fresh run for an existing item."""
        item = await self.lifecycle.get_item(item_id)
        if item.kind == EntityKind.POST.value:
            # Raises UnsupportedPlatform for manual-only platforms
            get_post_provider(item.platform, self.http)

        trace = DebugTrace()
        trace.log("rescrape_requested", {"previous_status": item.status})
        item = await self.lifecycle.start(item.id, reason="re-scrape requested", debug_trace=trace.to_list())
        return await self._run(item, trace)

    async def rescrape_many(self, item_ids: Sequence[uuid.UUID]) -> Dict[str, int]:
        """
        Re-scrape items one by one; a failing item does not stop the batch.

        Items with a run already in flight are skipped, not failed.
        """
        refreshed, failed, skipped = 0, 0, 0
        for item_id in item_ids:
            try:
                await self.rescrape(item_id)
                refreshed += 1
            except JobAlreadyInFlight:
                skipped += 1
            except TrackingError as exc:
                failed += 1
                logger.warning("Re-scrape failed", item_id=str(item_id), error=exc.code, detail=exc.message)

        return {"due": len(item_ids), "refreshed": refreshed, "failed": failed, "skipped": skipped}

    async def campaign_post_ids(self, campaign_id: str) -> List[uuid.UUID]:
        """Scrapeable posts linked to a campaign, least recently scraped first."""
        result = await self.session.execute(
            select(TrackedItem.id, TrackedItem.platform)
            .join(CampaignItem, CampaignItem.item_id == TrackedItem.id)
            .where(
                CampaignItem.campaign_id == campaign_id,
                TrackedItem.kind == EntityKind.POST.value,
            )
            .order_by(TrackedItem.last_scraped_at.asc().nulls_first(), TrackedItem.created_at)
        )
        return [row.id for row in result.all() if has_post_provider(row.platform)]

    async def scrape_campaign(self, campaign_id: str) -> Dict[str, int]:
        """Re-scrape every post of a campaign."""
        item_ids = await self.campaign_post_ids(campaign_id)
        summary = await self.rescrape_many(item_ids)
        logger.info("Campaign scrape finished", campaign_id=campaign_id, **summary)
        return summary

    async def get(self, item_id: Union[str, uuid.UUID]) -> TrackedItem:
        return await self.lifecycle.get_item(item_id)

    async def reset(self, item_id: Union[str, uuid.UUID], reason: str = "stuck job reset") -> TrackedItem:
        item = await self.lifecycle.get_item(item_id)
        lifecycle = lifecycle_for(item.kind)
        if not lifecycle.is_in_flight(item.status):
            raise InvalidTransition(
                f"Only in-flight items can be reset (status is '{item.status}')",
                details={"item_id": str(item.id), "status": item.status}
            )
        return await self.lifecycle.reset(item.id, reason=reason)

    async def _run(self, item: TrackedItem, trace: DebugTrace) -> TrackingResult:
        """Execute a claimed run; any failure leaves the item failed."""
        item_id = item.id
        try:
            if item.kind == EntityKind.POST.value:
                item = await PostScraper(self.session, self.http).scrape(item, trace)
                return TrackingResult(item, trace.to_list())

            item = await self.resolver.backfill_metadata(item, trace)
            if item.platform in self.settings.async_index_platforms:
                dispatcher = AsyncJobDispatcher(self.session, self.http, self.settings)
                dispatch = await dispatcher.dispatch(item, trace)
                item = await self.lifecycle.get_item(item.id)
                return TrackingResult(item, trace.to_list(), dispatch.correlation_handle)

            item = await InlineSoundIndexer(self.session, self.http).index(item, trace)
            return TrackingResult(item, trace.to_list())
        except TrackingError as exc:
            exc.details.setdefault("item_id", str(item_id))
            exc.details.setdefault("debug_trace", trace.to_list())
            await self._ensure_failed(item_id, exc.message, trace)
            raise
        except Exception as exc:
            logger.error("Unexpected pipeline error", item_id=str(item_id), exc_info=exc)
            await self._ensure_failed(item_id, f"internal error: {exc.__class__.__name__}", trace)
            raise

    async def _ensure_failed(self, item_id, reason: str, trace: DebugTrace) -> None:
        """Fail the item unless a component already did."""
        await self.session.rollback()
        current = await self.lifecycle.get_item(item_id)
        if lifecycle_for(current.kind).is_in_flight(current.status):
            try:
                await self.lifecycle.fail(item_id, reason=reason, debug_trace=trace.to_list())
            except InvalidTransition:
                logger.info("Item left in-flight state before it could be failed", item_id=str(item_id))
