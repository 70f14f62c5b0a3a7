"""Orchestrator webhook endpoint"""

from fastapi import APIRouter, Depends
import structlog

from tracker.api.deps import get_webhook_handler, require_webhook_secret
from tracker.core.errors import WebhookUnmatched
from tracker.core.webhook import WebhookCompletionHandler
from tracker.schemas.webhook import WebhookAck, WebhookPayload

router = APIRouter()
logger = structlog.get_logger()


@router.post("/orchestrator", response_model=WebhookAck, dependencies=[Depends(require_webhook_secret)])
async def orchestrator_callback(
    payload: WebhookPayload,
    handler: WebhookCompletionHandler = Depends(get_webhook_handler)
):
    """
    Completion callback for index runs.

    Always answers 200 once authenticated, including for unknown runs, so
    the orchestrator stops redelivering. A 502 is returned only when the
    run's results could not be fetched and a redelivery may succeed.
    """
    event = payload.to_event()
    logger.info(
        "Webhook received",
        run_id=event.correlation_handle,
        status=event.status,
        event_type=event.event_type,
        inline_rows=len(event.items) if event.items is not None else None
    )

    try:
        result = await handler.handle(event)
    except WebhookUnmatched as exc:
        return WebhookAck(outcome="ignored", detail=exc.message)

    return WebhookAck(
        outcome=result.outcome,
        tracked_item_id=str(result.item_id) if result.item_id else None,
        status=result.status,
        observations=result.observations,
        detail=result.detail,
    )
