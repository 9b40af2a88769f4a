"""
Proposal Data Access Objects (DAO).

WHAT: Database operations for proposals, their items, templates and
version snapshots.

WHY: The DAO pattern:
1. Separates data access from business logic
2. Enforces org-scoping for multi-tenancy
3. Provides the guarded status transition the workflow engine relies on

HOW: Extends BaseDAO with proposal-specific queries:
- Status-based filtering and statistics
- Ordered item replacement
- Version numbering
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any, Sequence

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.dao.base import BaseDAO
from proposal_engine.models.proposal import (
    Proposal,
    ProposalItem,
    ProposalStatus,
    ProposalTemplate,
    ProposalVersion,
)


class ProposalDAO(BaseDAO[Proposal]):
    """
    Data Access Object for Proposal model.

    WHAT: Provides CRUD and query operations for proposals.

    WHY: Centralizes all proposal database operations:
    - Enforces org_id scoping for security
    - Provides the compare-and-swap status transition
    - Aggregates dashboard statistics
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize ProposalDAO.

        Args:
            session: Async database session
        """
        super().__init__(Proposal, session)

    async def get_by_number(self, proposal_number: str, org_id: int) -> Optional[Proposal]:
        """Look up a proposal by its human-readable number."""
        result = await self.session.execute(
            select(Proposal).where(
                Proposal.proposal_number == proposal_number,
                Proposal.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    def for_update_query(self, proposal_id: int, org_id: Optional[int] = None):
        """SELECT ... FOR UPDATE for one proposal, reloading any cached instance."""
        query = select(Proposal).where(Proposal.id == proposal_id)
        if org_id is not None:
            query = query.where(Proposal.org_id == org_id)
        return query.with_for_update().execution_options(populate_existing=True)

    async def get_for_update(self, proposal_id: int, org_id: Optional[int] = None) -> Optional[Proposal]:
        """
        Load a proposal and lock its row until the transaction ends.

        WHY: Every workflow mutation takes this lock first. Two signers (or
        approvers) in different processes are then serialized, so the
        second one counts the first one's committed row and the final
        transition cannot be missed. SQLite has no row locks and ignores
        the clause; it serializes writers on its own.
        """
        result = await self.session.execute(self.for_update_query(proposal_id, org_id))
        return result.scalar_one_or_none()

    async def get_by_status(
        self,
        org_id: int,
        status: ProposalStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Proposal]:
        """
        Get proposals by status for an organization.

        WHY: Common use case for dashboards:
        - "Show me proposals waiting for approval"
        - "What has been accepted this month?"

        Args:
            org_id: Organization ID
            status: Proposal status to filter by
            skip: Pagination offset
            limit: Pagination limit

        Returns:
            List of proposals matching the status
        """
        result = await self.session.execute(
            select(Proposal)
            .where(
                Proposal.org_id == org_id,
                Proposal.status == status,
            )
            .order_by(Proposal.updated_at.desc(), Proposal.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_org(
        self,
        org_id: int,
        status: Optional[ProposalStatus] = None,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Proposal]:
        """List proposals for a tenant, newest first, with optional filters."""
        query = select(Proposal).where(Proposal.org_id == org_id)
        if status is not None:
            query = query.where(Proposal.status == status)
        if client_id is not None:
            query = query.where(Proposal.client_id == client_id)

        result = await self.session.execute(
            query.order_by(Proposal.created_at.desc(), Proposal.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        proposal_id: int,
        expected: ProposalStatus,
        new_status: ProposalStatus,
        **extra: Any,
    ) -> bool:
        """
        Move a proposal from ``expected`` to ``new_status`` atomically.

        WHAT: Conditional update guarded by the previous status.

        WHY: Concurrent workflow steps (two last approvals, two last
        signatures) must not both perform the same transition.

        Args:
            proposal_id: Proposal ID
            expected: Status the proposal must currently have
            new_status: Status to set
            **extra: Additional columns to set with the transition

        Returns:
            True if this caller performed the transition
        """
        return await self.update_where(
            proposal_id,
            {"status": expected},
            status=new_status,
            updated_at=datetime.utcnow(),
            **extra,
        )

    async def count_by_status(self, org_id: int) -> Dict[str, int]:
        """
        Get count of proposals by status for an organization.

        Args:
            org_id: Organization ID

        Returns:
            Dict mapping status value to count
        """
        result = await self.session.execute(
            select(Proposal.status, func.count(Proposal.id))
            .where(Proposal.org_id == org_id)
            .group_by(Proposal.status)
        )

        return {ProposalStatus(row[0]).value: row[1] for row in result.all()}

    async def calculate_total_value(
        self,
        org_id: int,
        status: Optional[ProposalStatus] = None,
    ) -> Decimal:
        """
        Calculate total final value of proposals.

        WHY: Business metrics such as pipeline value and accepted value.

        Args:
            org_id: Organization ID
            status: Optional status filter

        Returns:
            Sum of final_amount
        """
        query = select(func.coalesce(func.sum(Proposal.final_amount), 0)).where(
            Proposal.org_id == org_id
        )
        if status is not None:
            query = query.where(Proposal.status == status)

        result = await self.session.execute(query)
        return Decimal(str(result.scalar_one()))


class ProposalItemDAO(BaseDAO[ProposalItem]):
    """
    Data Access Object for ProposalItem model.

    WHY: Items are owned by their proposal; they are always read in
    display order and replaced as a whole when the proposal is saved.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalItem, session)

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> List[ProposalItem]:
        """Get a proposal's items in display order."""
        result = await self.session.execute(
            select(ProposalItem)
            .where(
                ProposalItem.proposal_id == proposal_id,
                ProposalItem.org_id == org_id,
            )
            .order_by(ProposalItem.item_order, ProposalItem.id)
        )
        return list(result.scalars().all())

    async def replace_items(
        self,
        proposal_id: int,
        org_id: int,
        rows: Sequence[Dict[str, Any]],
    ) -> List[ProposalItem]:
        """
        Replace all items of a proposal.

        WHAT: Deletes existing items and inserts ``rows`` with item_order
        assigned from their position (1-based).

        Args:
            proposal_id: Owning proposal
            org_id: Tenant
            rows: Item field values in display order

        Returns:
            Newly created items
        """
        await self.session.execute(
            delete(ProposalItem).where(
                ProposalItem.proposal_id == proposal_id,
                ProposalItem.org_id == org_id,
            )
        )

        prepared = [
            {**row, "proposal_id": proposal_id, "org_id": org_id, "item_order": index}
            for index, row in enumerate(rows, start=1)
        ]
        if not prepared:
            return []
        return await self.create_many(prepared)


class ProposalTemplateDAO(BaseDAO[ProposalTemplate]):
    """Data Access Object for ProposalTemplate model."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalTemplate, session)

    async def get_active(self, org_id: int, skip: int = 0, limit: int = 100) -> List[ProposalTemplate]:
        """Get active templates for a tenant, alphabetically."""
        result = await self.session.execute(
            select(ProposalTemplate)
            .where(
                ProposalTemplate.org_id == org_id,
                ProposalTemplate.is_active.is_(True),
            )
            .order_by(ProposalTemplate.name)
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())


class ProposalVersionDAO(BaseDAO[ProposalVersion]):
    """
    Data Access Object for ProposalVersion model.

    WHY: Version numbers are per proposal and strictly increasing.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalVersion, session)

    async def get_next_version_number(self, proposal_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(ProposalVersion.version_number), 0)).where(
                ProposalVersion.proposal_id == proposal_id
            )
        )
        return int(result.scalar_one()) + 1

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> List[ProposalVersion]:
        """Get all snapshots of a proposal, newest first."""
        result = await self.session.execute(
            select(ProposalVersion)
            .where(
                ProposalVersion.proposal_id == proposal_id,
                ProposalVersion.org_id == org_id,
            )
            .order_by(ProposalVersion.version_number.desc())
        )
        return list(result.scalars().all())
