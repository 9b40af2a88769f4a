"""
SQLAlchemy models package.

WHY: Importing every model here registers it on Base.metadata, which
both Alembic and the test fixtures rely on to create the schema.
"""

from proposal_engine.models.base import Base, TimestampMixin
from proposal_engine.models.proposal import (
    Proposal,
    ProposalItem,
    ProposalStatus,
    ProposalTemplate,
    ProposalVersion,
    TERMINAL_STATUSES,
)
from proposal_engine.models.workflow import (
    ApprovalChain,
    ApprovalRecord,
    ApprovalStatus,
    SignatureRequest,
    SignatureType,
    WorkflowEvent,
    WorkflowEventType,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Proposal",
    "ProposalItem",
    "ProposalStatus",
    "ProposalTemplate",
    "ProposalVersion",
    "TERMINAL_STATUSES",
    "ApprovalChain",
    "ApprovalRecord",
    "ApprovalStatus",
    "SignatureRequest",
    "SignatureType",
    "WorkflowEvent",
    "WorkflowEventType",
]
