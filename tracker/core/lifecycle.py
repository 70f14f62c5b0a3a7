"""
Job lifecycle state machine.

Sounds move ``pending -> indexing -> active | failed``; posts move
``pending | manual -> scraping -> scraped | failed``. Every transition is
a conditional UPDATE that only succeeds while the row still holds the
status that was read, so two processes racing on the same item cannot
both win. Each successful transition appends a ``job_transitions`` row.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Union

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.core.classifier import EntityKind
from tracker.core.errors import InvalidTransition, ItemNotFound, JobAlreadyInFlight
from tracker.models.tracked_item import ItemStatus, TrackedItem
from tracker.utils.job_logger import record_transition
from tracker.utils.validators import utcnow

logger = structlog.get_logger()


class Transition(str, enum.Enum):
    START = "start"
    COMPLETE = "complete"
    FAIL = "fail"
    RESET = "reset"


@dataclass(frozen=True)
class Lifecycle:
    kind: EntityKind
    pending: str
    running: str
    succeeded: str
    failed: str
    resting: FrozenSet[str] = frozenset()

    @property
    def states(self) -> FrozenSet[str]:
        return frozenset({self.pending, self.running, self.succeeded, self.failed}) | self.resting

    @property
    def terminal(self) -> FrozenSet[str]:
        return frozenset({self.succeeded, self.failed})

    def is_in_flight(self, status: str) -> bool:
        return status == self.running

    def sources(self, transition: Transition) -> FrozenSet[str]:
        if transition == Transition.START:
            return frozenset({self.pending, self.succeeded, self.failed}) | self.resting
        # complete, fail and reset all act on a running job
        return frozenset({self.running})

    def target(self, transition: Transition) -> str:
        return {
            Transition.START: self.running,
            Transition.COMPLETE: self.succeeded,
            Transition.FAIL: self.failed,
            Transition.RESET: self.pending,
        }[transition]


SOUND_LIFECYCLE = Lifecycle(
    kind=EntityKind.SOUND,
    pending=ItemStatus.PENDING.value,
    running=ItemStatus.INDEXING.value,
    succeeded=ItemStatus.ACTIVE.value,
    failed=ItemStatus.FAILED.value,
)

POST_LIFECYCLE = Lifecycle(
    kind=EntityKind.POST,
    pending=ItemStatus.PENDING.value,
    running=ItemStatus.SCRAPING.value,
    succeeded=ItemStatus.SCRAPED.value,
    failed=ItemStatus.FAILED.value,
    resting=frozenset({ItemStatus.MANUAL.value}),
)

IN_FLIGHT_STATUSES = frozenset({SOUND_LIFECYCLE.running, POST_LIFECYCLE.running})


def lifecycle_for(kind: Union[str, EntityKind]) -> Lifecycle:
    return SOUND_LIFECYCLE if EntityKind(kind) == EntityKind.SOUND else POST_LIFECYCLE


@dataclass
class MetricsSnapshot:
    """A complete metrics snapshot; it replaces the stored one wholesale."""
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    engagement_rate: float = 0.0

    def to_values(self) -> Dict[str, Any]:
        return {
            "views": self.views,
            "likes": self.likes,
            "comments": self.comments,
            "shares": self.shares,
            "engagement_rate": self.engagement_rate,
        }


class JobLifecycleManager:
    """
    Owns every status change of a TrackedItem.

    Args:
        session: Database session
        component: Name recorded in the transition log
    """

    def __init__(self, session: AsyncSession, component: str = "lifecycle"):
        self.session = session
        self.component = component

    async def get_item(self, item_id: Union[str, uuid.UUID]) -> TrackedItem:
        item_id = _as_uuid(item_id)
        result = await self.session.execute(
            select(TrackedItem)
            .where(TrackedItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ItemNotFound(f"Tracked item {item_id} not found", details={"item_id": str(item_id)})
        return item

    async def start(
        self,
        item_id,
        *,
        reason: str,
        debug_trace: Optional[List[Dict[str, Any]]] = None,
        values: Optional[Dict[str, Any]] = None
    ) -> TrackedItem:
        """
        Claim an item for a new run (``pending/terminal -> running``).

        Committed before returning so the claim is durable before any
        provider call. Raises JobAlreadyInFlight if a run is in progress.
        """
        run_values = {
            "job_started_at": utcnow(),
            "correlation_handle": None,
            "debug_trace": debug_trace or [],
        }
        run_values.update(values or {})
        return await self._transition(item_id, Transition.START, reason=reason, values=run_values)

    async def complete(
        self,
        item_id,
        metrics: MetricsSnapshot,
        *,
        reason: str,
        values: Optional[Dict[str, Any]] = None,
        commit: bool = True
    ) -> TrackedItem:
        """Finish a run, replacing the metrics snapshot."""
        run_values = metrics.to_values()
        run_values["last_scraped_at"] = utcnow()
        run_values.update(values or {})
        return await self._transition(
            item_id, Transition.COMPLETE, reason=reason, values=run_values, commit=commit
        )

    async def fail(
        self,
        item_id,
        *,
        reason: str,
        debug_trace: Optional[List[Dict[str, Any]]] = None
    ) -> TrackedItem:
        values = {"debug_trace": debug_trace} if debug_trace is not None else None
        return await self._transition(item_id, Transition.FAIL, reason=reason, values=values)

    async def reset(self, item_id, *, reason: str) -> TrackedItem:
        """Return a stuck in-flight item to pending."""
        return await self._transition(
            item_id, Transition.RESET, reason=reason, values={"correlation_handle": None}
        )

    async def attach_correlation(self, item_id, correlation_handle: str) -> bool:
        """Record the orchestrator run id while the item is still indexing."""
        item_id = _as_uuid(item_id)
        result = await self.session.execute(
            update(TrackedItem)
            .where(
                TrackedItem.id == item_id,
                TrackedItem.status == SOUND_LIFECYCLE.running,
            )
            .values(correlation_handle=correlation_handle, updated_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount == 1

    async def _transition(
        self,
        item_id,
        transition: Transition,
        *,
        reason: str,
        values: Optional[Dict[str, Any]] = None,
        commit: bool = True
    ) -> TrackedItem:
        item_id = _as_uuid(item_id)
        row = (
            await self.session.execute(
                select(TrackedItem.kind, TrackedItem.status).where(TrackedItem.id == item_id)
            )
        ).one_or_none()
        if row is None:
            raise ItemNotFound(f"Tracked item {item_id} not found", details={"item_id": str(item_id)})

        lifecycle = lifecycle_for(row.kind)
        current = row.status
        self._check_precondition(lifecycle, transition, current, item_id)

        target = lifecycle.target(transition)
        result = await self.session.execute(
            update(TrackedItem)
            .where(TrackedItem.id == item_id, TrackedItem.status == current)
            .values(status=target, updated_at=utcnow(), **(values or {}))
        )
        if result.rowcount != 1:
            # Someone else moved the item between our read and write
            await self.session.rollback()
            latest = (
                await self.session.execute(
                    select(TrackedItem.status).where(TrackedItem.id == item_id)
                )
            ).scalar_one_or_none()
            logger.warning(
                "Lost transition race",
                item_id=str(item_id),
                transition=transition.value,
                expected=current,
                actual=latest
            )
            self._check_precondition(lifecycle, transition, latest, item_id)
            raise InvalidTransition(
                f"Item {item_id} changed state during {transition.value}",
                details={"item_id": str(item_id), "status": latest}
            )

        await record_transition(self.session, item_id, self.component, current, target, reason)
        if commit:
            await self.session.commit()
        return await self.get_item(item_id)

    def _check_precondition(self, lifecycle: Lifecycle, transition: Transition, current, item_id):
        if current in lifecycle.sources(transition):
            return
        details = {"item_id": str(item_id), "status": current, "transition": transition.value}
        if transition == Transition.START and lifecycle.is_in_flight(current):
            raise JobAlreadyInFlight(
                f"A {lifecycle.kind.value} job is already running for this item; try again shortly",
                details=details
            )
        raise InvalidTransition(
            f"Cannot {transition.value} a {lifecycle.kind.value} in status '{current}'",
            details=details
        )


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ItemNotFound(f"Tracked item {value} not found", details={"item_id": str(value)})
