"""
Signature request Data Access Object (DAO).

WHAT: Database operations for client signature requests.

WHY: Signing is the last step before a proposal is accepted. The engine
needs guarded updates so each request is signed (or declined) once, and a
count of outstanding requests to decide acceptance.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.dao.base import BaseDAO
from proposal_engine.models.workflow import SignatureRequest


class SignatureRequestDAO(BaseDAO[SignatureRequest]):
    """Data Access Object for SignatureRequest model."""

    def __init__(self, session: AsyncSession):
        super().__init__(SignatureRequest, session)

    async def get_for_proposal(self, proposal_id: int, org_id: int) -> List[SignatureRequest]:
        result = await self.session.execute(
            select(SignatureRequest)
            .where(
                SignatureRequest.proposal_id == proposal_id,
                SignatureRequest.org_id == org_id,
            )
            .order_by(SignatureRequest.id)
        )
        return list(result.scalars().all())

    async def count_unsigned(self, proposal_id: int) -> int:
        """Count requests of a proposal that have no signature yet."""
        result = await self.session.execute(
            select(func.count(SignatureRequest.id)).where(
                SignatureRequest.proposal_id == proposal_id,
                SignatureRequest.signed_at.is_(None),
            )
        )
        return int(result.scalar_one())

    async def mark_signed(
        self,
        signature_id: int,
        signed_at: datetime,
        signature_data: Optional[Dict[str, Any]],
        ip_address: Optional[str],
        user_agent: Optional[str],
        location_data: Optional[Dict[str, Any]],
        is_verified: bool,
    ) -> bool:
        """
        Record a signature on a request that is neither signed nor declined.

        Returns:
            True if this caller signed the request
        """
        return await self.update_where(
            signature_id,
            {"signed_at": None, "declined_at": None},
            signed_at=signed_at,
            signature_data=signature_data,
            ip_address=ip_address,
            user_agent=user_agent,
            location_data=location_data,
            is_verified=is_verified,
        )

    async def mark_declined(self, signature_id: int, declined_at: datetime, reason: Optional[str]) -> bool:
        return await self.update_where(
            signature_id,
            {"signed_at": None, "declined_at": None},
            declined_at=declined_at,
            decline_reason=reason,
        )

    async def mark_expiry_notified(self, signature_id: int, notified_at: datetime) -> bool:
        return await self.update_where(
            signature_id,
            {"signed_at": None, "expiry_notified_at": None},
            expiry_notified_at=notified_at,
        )

    async def get_expired_unsigned(
        self,
        now: datetime,
        org_id: Optional[int] = None,
        limit: int = 500,
    ) -> List[SignatureRequest]:
        """
        Find unsigned, undeclined requests past expiry that were not
        flagged yet.
        """
        query = select(SignatureRequest).where(
            SignatureRequest.signed_at.is_(None),
            SignatureRequest.declined_at.is_(None),
            SignatureRequest.expires_at < now,
            SignatureRequest.expiry_notified_at.is_(None),
        )
        if org_id is not None:
            query = query.where(SignatureRequest.org_id == org_id)

        result = await self.session.execute(
            query.order_by(SignatureRequest.expires_at, SignatureRequest.id).limit(limit)
        )
        return list(result.scalars().all())
