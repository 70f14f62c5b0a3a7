"""Webhook completion handler for orchestrator-run index jobs."""

from dataclasses import dataclass
from typing import Any, List, Optional
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import Settings, settings as default_settings
from tracker.core.errors import InvalidTransition, ProviderRejected, WebhookUnmatched
from tracker.core.http_client import RetryingClient
from tracker.core.lifecycle import JobLifecycleManager
from tracker.core.observations import finalize_index
from tracker.core.providers import get_sound_provider
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace

logger = structlog.get_logger()

SUCCEEDED = "succeeded"
FAILED = "failed"
RUNNING = "running"

FAILURE_STATUSES = {"FAILED", "ABORTED", "TIMED-OUT", "TIMED_OUT", "ABORTING"}


@dataclass
class WebhookEvent:
    """A completion callback, normalized from either payload shape."""
    correlation_handle: str
    status: Optional[str] = None
    event_type: Optional[str] = None
    items: Optional[List[Any]] = None
    dataset_id: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def outcome(self) -> str:
        status = (self.status or "").upper()
        event_type = (self.event_type or "").upper()
        if self.failure_reason or status in FAILURE_STATUSES:
            return FAILED
        if event_type.endswith(("FAILED", "ABORTED", "TIMED_OUT")):
            return FAILED
        if status == "SUCCEEDED" or event_type.endswith("SUCCEEDED") or self.items is not None:
            return SUCCEEDED
        return RUNNING


@dataclass
class WebhookResult:
    outcome: str
    item_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    observations: int = 0
    detail: Optional[str] = None


class WebhookCompletionHandler:
    """
    Finalizes index jobs from orchestrator callbacks.

    Delivery is at-least-once. Replays are harmless: observations are
    upserted on (parent_id, external_video_id) and the completion
    transition only succeeds once, rolling back the whole unit otherwise.
    """

    def __init__(self, session: AsyncSession, http: RetryingClient, settings: Optional[Settings] = None):
        self.session = session
        self.http = http
        self.settings = settings or default_settings
        self.lifecycle = JobLifecycleManager(session, component="webhook")

    async def find_item(self, correlation_handle: str) -> Optional[TrackedItem]:
        result = await self.session.execute(
            select(TrackedItem)
            .where(TrackedItem.correlation_handle == correlation_handle)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def fetch_dataset(self, dataset_id: str) -> List[Any]:
        url = f"{self.settings.apify_base_url.rstrip('/')}/datasets/{dataset_id}/items"
        data = await self.http.get_json(
            url,
            params={"clean": "true", "format": "json", "limit": self.settings.index_result_cap},
            headers={"Authorization": f"Bearer {self.settings.apify_api_token}"}
        )
        if isinstance(data, dict):
            data = data.get("items") or data.get("data") or []
        return data if isinstance(data, list) else []

    async def handle(self, event: WebhookEvent) -> WebhookResult:
        """
        Apply one callback.

        Raises:
            WebhookUnmatched: no item carries this correlation handle
            UpstreamUnavailable: result rows could not be fetched; the
                orchestrator should redeliver
        """
        item = await self.find_item(event.correlation_handle)
        if item is None:
            logger.warning(
                "Webhook for unknown correlation handle",
                correlation_handle=event.correlation_handle,
                status=event.status
            )
            raise WebhookUnmatched(
                f"No tracked item for run {event.correlation_handle}",
                details={"correlation_handle": event.correlation_handle}
            )

        item_id = item.id
        outcome = event.outcome
        trace = DebugTrace(item.debug_trace)
        trace.log("webhook_received", {
            "run_id": event.correlation_handle,
            "status": event.status,
            "outcome": outcome,
        })

        if outcome == RUNNING:
            logger.info("Webhook for running job acknowledged", item_id=str(item_id), status=event.status)
            return WebhookResult(RUNNING, item_id, item.status, detail="run still in progress")

        if outcome == FAILED:
            reason = event.failure_reason or f"orchestrator run {event.status or event.event_type}"
            return await self._fail(item_id, trace, reason)

        rows = event.items
        if rows is None:
            if event.dataset_id:
                try:
                    rows = await self.fetch_dataset(event.dataset_id)
                except ProviderRejected as exc:
                    return await self._fail(item_id, trace, f"result dataset unavailable (HTTP {exc.status_code})")
            else:
                rows = []

        cap = self.settings.index_result_cap
        if len(rows) > cap:
            logger.warning("Webhook rows over result cap truncated", item_id=str(item_id), rows=len(rows), cap=cap)
            trace.log("rows_truncated", {"rows": len(rows), "cap": cap})
            rows = rows[:cap]

        provider = get_sound_provider(item.platform, self.http)
        try:
            completed = await finalize_index(
                self.session,
                item,
                provider,
                rows,
                component="webhook",
                trace=trace,
                correlation_handle=event.correlation_handle,
            )
        except InvalidTransition as exc:
            logger.info(
                "Duplicate or stale webhook ignored",
                item_id=str(item_id),
                run_id=event.correlation_handle,
                detail=exc.message
            )
            return WebhookResult("ignored", item_id, exc.details.get("status"), detail=exc.message)

        return WebhookResult(SUCCEEDED, completed.id, completed.status, observations=completed.observation_count)

    async def _fail(self, item_id: uuid.UUID, trace: DebugTrace, reason: str) -> WebhookResult:
        trace.log("index_failed", {"reason": reason})
        try:
            failed = await self.lifecycle.fail(item_id, reason=reason, debug_trace=trace.to_list())
        except InvalidTransition as exc:
            logger.info("Failure webhook for finished item ignored", item_id=str(item_id), detail=exc.message)
            return WebhookResult("ignored", item_id, exc.details.get("status"), detail=exc.message)

        logger.warning("Index job failed", item_id=str(item_id), reason=reason)
        return WebhookResult(FAILED, failed.id, failed.status, detail=reason)
