"""
FastAPI dependencies for tenant scoping and service construction.

WHY: Dependencies provide the tenant id and request-scoped services to
route handlers, so every handler works on the same session (one
transaction per request) and the same process-wide proposal locks.

Authentication is delegated to the identity provider in front of this
service; it forwards the caller's organization in the X-Org-ID header.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.core.exceptions import ValidationError
from proposal_engine.db.session import get_db
from proposal_engine.services.proposal_service import ProposalService
from proposal_engine.services.workflow_engine import WorkflowEngine, get_proposal_locks


def get_org_id(x_org_id: Optional[str] = Header(default=None, alias="X-Org-ID")) -> int:
    """
    Get the caller's organization ID.

    Usage:
        @router.get("/proposals")
        async def list_proposals(org_id: int = Depends(get_org_id)):
            ...

    Raises:
        ValidationError: If the header is missing or not a positive integer
    """
    if x_org_id is None or not x_org_id.strip():
        raise ValidationError(message="X-Org-ID header is required", field="X-Org-ID")
    try:
        org_id = int(x_org_id)
    except ValueError:
        raise ValidationError(message="X-Org-ID must be an integer", field="X-Org-ID") from None
    if org_id < 1:
        raise ValidationError(message="X-Org-ID must be positive", field="X-Org-ID")
    return org_id


def get_workflow_engine(db: AsyncSession = Depends(get_db)) -> WorkflowEngine:
    """Workflow engine bound to the request session."""
    return WorkflowEngine(db, locks=get_proposal_locks())


def get_proposal_service(db: AsyncSession = Depends(get_db)) -> ProposalService:
    """Proposal service bound to the request session."""
    return ProposalService(db)
