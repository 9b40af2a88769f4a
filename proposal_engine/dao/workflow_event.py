"""
Workflow event (notification outbox) Data Access Object.

WHAT: Writes domain events and hands undelivered ones to the dispatcher.

WHY: Events are inserted in the same transaction as the state change they
describe; delivery happens later and is retried a bounded number of times.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.dao.base import BaseDAO
from proposal_engine.models.workflow import WorkflowEvent, WorkflowEventType


class WorkflowEventDAO(BaseDAO[WorkflowEvent]):
    """Data Access Object for WorkflowEvent model."""

    def __init__(self, session: AsyncSession):
        super().__init__(WorkflowEvent, session)

    async def emit(
        self,
        org_id: int,
        proposal_id: int,
        event_type: WorkflowEventType,
        recipient_email: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> WorkflowEvent:
        """Record one event addressed to one recipient."""
        return await self.create(
            org_id=org_id,
            proposal_id=proposal_id,
            event_type=event_type,
            recipient_email=recipient_email,
            payload=payload or {},
        )

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> List[WorkflowEvent]:
        result = await self.session.execute(
            select(WorkflowEvent)
            .where(
                WorkflowEvent.proposal_id == proposal_id,
                WorkflowEvent.org_id == org_id,
            )
            .order_by(WorkflowEvent.id)
        )
        return list(result.scalars().all())

    async def get_pending(self, max_attempts: int, limit: int = 100) -> List[WorkflowEvent]:
        """
        Get undelivered events that still have attempts left, oldest first.
        """
        result = await self.session.execute(
            select(WorkflowEvent)
            .where(
                WorkflowEvent.dispatched_at.is_(None),
                WorkflowEvent.attempts < max_attempts,
            )
            .order_by(WorkflowEvent.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_dispatched(self, event_id: int, dispatched_at: datetime, attempts: int) -> None:
        await self.session.execute(
            update(WorkflowEvent)
            .where(WorkflowEvent.id == event_id)
            .values(dispatched_at=dispatched_at, attempts=attempts, last_error=None)
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, event_id: int, attempts: int, error: str) -> None:
        await self.session.execute(
            update(WorkflowEvent)
            .where(WorkflowEvent.id == event_id)
            .values(attempts=attempts, last_error=error[:2000])
            .execution_options(synchronize_session=False)
        )
