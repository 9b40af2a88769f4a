"""
Approval Data Access Objects (DAO).

WHAT: Database operations for approval chains and per-approver
approval records.

WHY: The workflow engine needs:
1. The stored chain configuration to activate the next level
2. Level-scoped counts to decide level completion
3. Guarded decisions so a record is decided exactly once
4. The overdue-pending query driving the timeout sweep

HOW: Extends BaseDAO with approval-specific queries.
"""

from datetime import datetime
from typing import List, Optional, Dict

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.dao.base import BaseDAO
from proposal_engine.models.workflow import ApprovalChain, ApprovalRecord, ApprovalStatus


class ApprovalChainDAO(BaseDAO[ApprovalChain]):
    """Data Access Object for ApprovalChain model."""

    def __init__(self, session: AsyncSession):
        super().__init__(ApprovalChain, session)

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> Optional[ApprovalChain]:
        result = await self.session.execute(
            select(ApprovalChain).where(
                ApprovalChain.proposal_id == proposal_id,
                ApprovalChain.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def advance_level(self, chain_id: int, from_level: int, to_level: int) -> bool:
        """
        Move the sequential cursor from ``from_level`` to ``to_level``.

        WHY: Two approvers completing the same level concurrently must not
        both activate the next level. Only the caller that still sees
        ``current_level == from_level`` wins.
        """
        return await self.update_where(
            chain_id,
            {"current_level": from_level},
            current_level=to_level,
        )


class ApprovalRecordDAO(BaseDAO[ApprovalRecord]):
    """
    Data Access Object for ApprovalRecord model.

    WHAT: Provides CRUD and query operations for approval records.

    WHY: Centralizes approval record access:
    - Enforces org_id scoping
    - Aggregates per-level decisions
    - Finds overdue records for the timeout sweep
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ApprovalRecord, session)

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> List[ApprovalRecord]:
        """Get all approval records of a proposal ordered by level."""
        result = await self.session.execute(
            select(ApprovalRecord)
            .where(
                ApprovalRecord.proposal_id == proposal_id,
                ApprovalRecord.org_id == org_id,
            )
            .order_by(ApprovalRecord.level, ApprovalRecord.id)
        )
        return list(result.scalars().all())

    async def count_by_status_for_level(self, proposal_id: int, level: int) -> Dict[ApprovalStatus, int]:
        """
        Count decisions at one level of a proposal.

        Returns:
            Dict mapping ApprovalStatus to count (missing statuses are 0)
        """
        result = await self.session.execute(
            select(ApprovalRecord.status, func.count(ApprovalRecord.id))
            .where(
                ApprovalRecord.proposal_id == proposal_id,
                ApprovalRecord.level == level,
            )
            .group_by(ApprovalRecord.status)
        )
        counts = {status: 0 for status in ApprovalStatus}
        for status, count in result.all():
            counts[ApprovalStatus(status)] = count
        return counts

    async def record_decision(
        self,
        approval_id: int,
        decision: ApprovalStatus,
        comments: Optional[str],
        decided_at: datetime,
    ) -> bool:
        """
        Record a decision on a still-pending approval.

        Returns:
            True if this caller decided the record, False if it was
            already decided
        """
        return await self.update_where(
            approval_id,
            {"status": ApprovalStatus.PENDING},
            status=decision,
            comments=comments,
            decided_at=decided_at,
        )

    async def mark_escalated(self, approval_id: int, escalated_at: datetime) -> bool:
        """Flag an overdue pending record as escalated, once."""
        return await self.update_where(
            approval_id,
            {"status": ApprovalStatus.PENDING, "escalated_at": None},
            escalated_at=escalated_at,
        )

    async def get_overdue_pending(
        self,
        now: datetime,
        org_id: Optional[int] = None,
        limit: int = 500,
    ) -> List[ApprovalRecord]:
        """
        Find pending records whose timeout has passed and that were not
        escalated yet.

        Args:
            now: Reference time
            org_id: Optional tenant filter (None sweeps every tenant)
            limit: Batch size
        """
        query = select(ApprovalRecord).where(
            ApprovalRecord.status == ApprovalStatus.PENDING,
            ApprovalRecord.timeout_at < now,
            ApprovalRecord.escalated_at.is_(None),
        )
        if org_id is not None:
            query = query.where(ApprovalRecord.org_id == org_id)

        result = await self.session.execute(
            query.order_by(ApprovalRecord.timeout_at, ApprovalRecord.id).limit(limit)
        )
        return list(result.scalars().all())
