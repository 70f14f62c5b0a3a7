"""Webhook Pydantic schemas"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List, Any

from tracker.core.webhook import WebhookEvent


class RunResource(BaseModel):
    """Subset of the orchestrator's run object"""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    status: Optional[str] = None
    defaultDatasetId: Optional[str] = None


class WebhookPayload(BaseModel):
    """
    Completion callback body.

    Accepts the orchestrator's native shape
    ``{eventType, resource: {id, status, defaultDatasetId}, secret}`` as
    well as a direct ``{correlationHandle, items | failureReason}`` body.
    """
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "eventType": "ACTOR.RUN.SUCCEEDED",
                "resource": {"id": "run_abc", "status": "SUCCEEDED", "defaultDatasetId": "ds_123"},
                "secret": "shared-secret"
            }
        }
    )

    event_type: Optional[str] = Field(default=None, alias="eventType")
    resource: Optional[RunResource] = None
    secret: Optional[str] = None
    correlation_handle: Optional[str] = Field(default=None, alias="correlationHandle")
    run_id: Optional[str] = Field(default=None, alias="runId")
    status: Optional[str] = None
    items: Optional[List[Any]] = Field(default=None, alias="payload")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    dataset_id: Optional[str] = Field(default=None, alias="defaultDatasetId")

    @model_validator(mode="before")
    @classmethod
    def accept_items_key(cls, data: Any) -> Any:
        # Direct callers may send the rows as "items" instead of "payload"
        if isinstance(data, dict) and "items" in data and "payload" not in data:
            data = dict(data)
            data["payload"] = data.pop("items")
        return data

    @model_validator(mode="after")
    def require_handle(self) -> "WebhookPayload":
        if not self.handle:
            raise ValueError("correlationHandle or resource.id is required")
        return self

    @property
    def handle(self) -> Optional[str]:
        if self.resource and self.resource.id:
            return self.resource.id
        return self.correlation_handle or self.run_id

    def to_event(self) -> WebhookEvent:
        resource = self.resource or RunResource()
        return WebhookEvent(
            correlation_handle=self.handle,
            status=resource.status or self.status,
            event_type=self.event_type,
            items=self.items,
            dataset_id=resource.defaultDatasetId or self.dataset_id,
            failure_reason=self.failure_reason,
        )


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    tracked_item_id: Optional[str] = None
    status: Optional[str] = None
    observations: int = 0
    detail: Optional[str] = None
