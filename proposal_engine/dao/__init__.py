"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from proposal_engine.dao.base import BaseDAO
from proposal_engine.dao.proposal import (
    ProposalDAO,
    ProposalItemDAO,
    ProposalTemplateDAO,
    ProposalVersionDAO,
)
from proposal_engine.dao.approval import ApprovalChainDAO, ApprovalRecordDAO
from proposal_engine.dao.signature import SignatureRequestDAO
from proposal_engine.dao.workflow_event import WorkflowEventDAO

__all__ = [
    "BaseDAO",
    "ProposalDAO",
    "ProposalItemDAO",
    "ProposalTemplateDAO",
    "ProposalVersionDAO",
    "ApprovalChainDAO",
    "ApprovalRecordDAO",
    "SignatureRequestDAO",
    "WorkflowEventDAO",
]
