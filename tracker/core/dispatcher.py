"""Async job dispatcher: submits sound index jobs to the Apify orchestrator."""

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import Settings, settings as default_settings
from tracker.core.errors import SubmissionFailed, TrackingError
from tracker.core.http_client import RetryingClient
from tracker.core.lifecycle import JobLifecycleManager
from tracker.core.providers import get_sound_provider
from tracker.models.tracked_item import TrackedItem
from tracker.utils.job_logger import DebugTrace

logger = structlog.get_logger()

WEBHOOK_EVENT_TYPES = [
    "ACTOR.RUN.SUCCEEDED",
    "ACTOR.RUN.FAILED",
    "ACTOR.RUN.ABORTED",
    "ACTOR.RUN.TIMED_OUT",
]


def normalize_actor_id(actor_id: str) -> str:
    """Apify API paths use 'user~actor' rather than 'user/actor'."""
    return actor_id.strip().replace("/", "~")


@dataclass
class DispatchResult:
    correlation_handle: str
    status: str
    dataset_id: Optional[str] = None


class AsyncJobDispatcher:
    """
    Submits long-running index jobs and returns without waiting.

    The item must already be ``indexing``. Completion arrives later on the
    webhook endpoint, matched by the run id stored as correlation handle.
    """

    def __init__(self, session: AsyncSession, http: RetryingClient, settings: Optional[Settings] = None):
        self.session = session
        self.http = http
        self.settings = settings or default_settings
        self.lifecycle = JobLifecycleManager(session, component="dispatcher")

    def actor_for(self, platform: str) -> str:
        actors = {
            "tiktok": self.settings.tiktok_sound_actor,
            "instagram": self.settings.instagram_sound_actor,
        }
        return actors[platform]

    def webhook_definitions(self) -> List[Dict[str, Any]]:
        secret = self.settings.webhook_secret
        payload_template = (
            '{"eventType": {{eventType}}, "resource": {{resource}}, '
            f'"secret": {json.dumps(secret)}}}'
        )
        return [{
            "eventTypes": WEBHOOK_EVENT_TYPES,
            "requestUrl": self.settings.webhook_url,
            "payloadTemplate": payload_template,
            "headersTemplate": json.dumps({"X-Webhook-Secret": secret}),
        }]

    def _encoded_webhooks(self) -> str:
        raw = json.dumps(self.webhook_definitions()).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    async def dispatch(self, item: TrackedItem, trace: DebugTrace) -> DispatchResult:
        """
        Start an orchestrator run for a sound.

        Raises:
            SubmissionFailed: the orchestrator did not accept the run; the
                item has been moved to ``failed``
        """
        provider = get_sound_provider(item.platform, self.http)
        actor_id = normalize_actor_id(self.actor_for(item.platform))
        max_items = self.settings.index_result_cap
        run_input = provider.actor_input(
            item.page_url or provider.page_url(item.canonical_key), item.canonical_key, max_items
        )
        url = f"{self.settings.apify_base_url.rstrip('/')}/acts/{actor_id}/runs"
        trace.log("dispatch_submitting", {"actor": actor_id, "max_items": max_items})

        try:
            data = await self.http.post_json(
                url,
                json=run_input,
                params={"webhooks": self._encoded_webhooks()},
                headers={"Authorization": f"Bearer {self.settings.apify_api_token}"}
            )
        except TrackingError as exc:
            await self._fail(item, trace, exc.message, {
                "error": exc.code,
                "status": exc.details.get("status_code"),
                "body": (getattr(exc, "body", None) or "")[:400],
            })
            raise SubmissionFailed(
                f"Orchestrator did not accept the index job: {exc.message}",
                details={"actor": actor_id, "cause": exc.code},
                retryable=exc.retryable
            ) from exc

        run = data.get("data") if isinstance(data, dict) and isinstance(data.get("data"), dict) else data
        run_id = run.get("id") if isinstance(run, dict) else None
        if not run_id:
            await self._fail(item, trace, "Orchestrator response had no run id", {"keys": list(run or {})[:20]})
            raise SubmissionFailed("Orchestrator response had no run id", details={"actor": actor_id})

        status = str(run.get("status") or "READY").upper()
        result = DispatchResult(
            correlation_handle=str(run_id),
            status="running" if status == "RUNNING" else "queued",
            dataset_id=run.get("defaultDatasetId"),
        )
        trace.log("dispatch_submitted", {
            "run_id": result.correlation_handle,
            "status": status,
            "dataset_id": result.dataset_id,
        })

        attached = await self.lifecycle.attach_correlation(item.id, result.correlation_handle)
        if not attached:
            # Item left indexing (reset or finished) while we were submitting
            logger.warning("Run started for an item no longer indexing", item_id=str(item.id), run_id=run_id)

        logger.info(
            "Sound dispatched",
            item_id=str(item.id),
            platform=item.platform,
            run_id=result.correlation_handle,
            status=result.status
        )
        return result

    async def _fail(self, item: TrackedItem, trace: DebugTrace, reason: str, data: Dict[str, Any]):
        trace.log("dispatch_failed", data)
        logger.error("Index job submission failed", item_id=str(item.id), reason=reason)
        await self.lifecycle.fail(item.id, reason=f"submission failed: {reason}", debug_trace=trace.to_list())
