"""Utilities for recording job activity: the per-run debug trace and the
append-only transition log."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class DebugTrace:
    """
    Ordered list of ``{step, data}`` entries describing one run.

    The trace is persisted on the item when a run starts and returned to
    the caller on success and failure alike.
    """

    def __init__(self, steps: Optional[List[Dict[str, Any]]] = None):
        self.steps: List[Dict[str, Any]] = list(steps or [])

    def log(self, step: str, data: Any = None) -> None:
        entry = {
            "step": step,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        if data is not None:
            entry["data"] = data
        self.steps.append(entry)

    def to_list(self) -> List[Dict[str, Any]]:
        return list(self.steps)

    def __len__(self):
        return len(self.steps)


async def record_transition(
    session: AsyncSession,
    item_id: Union[str, uuid.UUID],
    component: str,
    from_state: Optional[str],
    to_state: str,
    reason: Optional[str] = None
) -> None:
    """
    Append a transition row. Does not commit.

    Args:
        session: Database session (the caller's transaction)
        item_id: Tracked item UUID
        component: Which part of the pipeline made the transition
        from_state: Status before the transition (None on creation)
        to_state: Status after the transition
        reason: Free-form reason shown in the history endpoint
    """
    from tracker.models.job_transition import JobTransition

    if isinstance(item_id, str):
        item_id = uuid.UUID(item_id)

    session.add(
        JobTransition(
            item_id=item_id,
            component=component,
            from_state=from_state,
            to_state=to_state,
            reason=(reason or "")[:1000] or None,
        )
    )
    logger.info(
        "Item transition",
        item_id=str(item_id),
        component=component,
        from_state=from_state,
        to_state=to_state,
        reason=reason
    )


async def get_transitions(session: AsyncSession, item_id: Union[str, uuid.UUID]) -> list:
    """Get the transition history for an item, oldest first."""
    from tracker.models.job_transition import JobTransition

    if isinstance(item_id, str):
        item_id = uuid.UUID(item_id)

    result = await session.execute(
        select(JobTransition)
        .where(JobTransition.item_id == item_id)
        .order_by(JobTransition.created_at, JobTransition.id)
    )
    return list(result.scalars().all())
