"""
Pydantic schemas for the proposal approval/signature workflow.

WHAT: Approval chain configuration, decision and signature inputs, result
objects and the workflow status projection.

WHY: Every public WorkflowEngine method returns a result object instead of
raising, so callers (API handlers, batch jobs) can present structured,
stage-addressable feedback:
- ``success`` tells whether the step happened
- ``errors`` lists typed WorkflowError entries

HOW: Uses Pydantic v2. Configuration inputs are permissive on purpose: a
level without approvers is a ConfigurationError reported by the engine,
not a request parsing failure.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Any, Dict, List, Literal

from pydantic import BaseModel, Field

from proposal_engine.models.proposal import ProposalStatus
from proposal_engine.models.workflow import SignatureType


# ============================================================================
# Enums
# ============================================================================


class WorkflowErrorKind(str, Enum):
    """Error taxonomy surfaced by the workflow engine."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    POLICY = "policy"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


class WorkflowStage(str, Enum):
    """Derived workflow stage (projection, never stored)."""

    DRAFT = "draft"
    APPROVAL = "approval"
    SIGNATURE = "signature"
    COMPLETED = "completed"
    REJECTED = "rejected"


# ============================================================================
# Inputs
# ============================================================================


class Approver(BaseModel):
    id: int
    email: str = Field(..., max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)


class ApprovalLevelConfig(BaseModel):
    """
    One approval level.

    WHAT: Approver set, required approvals and timeout for a level.
    """

    level: int
    approvers: List[Approver] = Field(default_factory=list)
    required_approvals: int = 1
    timeout_hours: int = 48


class ApprovalChainConfig(BaseModel):
    """
    Approval chain configuration.

    WHY: ``parallel_approval`` activates every level at once; otherwise
    only the lowest level is active and later levels are activated as
    earlier ones complete.
    """

    levels: List[ApprovalLevelConfig] = Field(default_factory=list)
    parallel_approval: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "levels": [
                    {
                        "level": 1,
                        "approvers": [{"id": 7, "email": "manager@msp.example", "name": "Pat"}],
                        "required_approvals": 1,
                        "timeout_hours": 48,
                    }
                ],
                "parallel_approval": False,
            }
        }


class ApprovalDecision(BaseModel):
    decision: Literal["approved", "rejected"]
    comments: Optional[str] = None


class SignatureRequestCreate(BaseModel):
    """
    Signature request input.

    WHY: ``expires_in_days`` defaults to configuration when omitted.
    """

    signer_email: str = Field(..., min_length=3, max_length=255)
    signer_name: str = Field(..., min_length=1, max_length=255)
    signature_type: SignatureType = SignatureType.ELECTRONIC
    expires_in_days: Optional[int] = Field(default=None, gt=0, le=365)
    custom_message: Optional[str] = Field(default=None, max_length=2000)


class SignaturePayload(BaseModel):
    """
    Signature submission.

    WHY: ip_address, user_agent and location_data are opaque metadata
    passed through to storage without validation.
    """

    signature_data: Dict[str, Any] = Field(default_factory=dict)
    verification_code: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location_data: Optional[Dict[str, Any]] = None


class SignatureDecline(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# ============================================================================
# Results
# ============================================================================


class WorkflowError(BaseModel):
    """Typed, stage- or field-addressable workflow error."""

    kind: WorkflowErrorKind
    message: str
    stage: Optional[str] = None
    field: Optional[str] = None


class OperationResult(BaseModel):
    """Base result shape: ``{success, errors}``."""

    success: bool
    errors: List[WorkflowError] = Field(default_factory=list)

    def error_messages(self) -> List[str]:
        return [error.message for error in self.errors]


class ApprovalChainResult(OperationResult):
    approval_ids: List[int] = Field(default_factory=list)
    activated_levels: List[int] = Field(default_factory=list)
    proposal_status: Optional[ProposalStatus] = None


class ApprovalDecisionResult(OperationResult):
    """
    Outcome of an approval decision.

    next_stage is one of ``rejected``, ``next_approval_level``,
    ``signature`` or ``pending``.
    """

    proposal_status: Optional[ProposalStatus] = None
    level_complete: bool = False
    activated_level: Optional[int] = None
    next_stage: Optional[str] = None


class SignatureRequestResult(OperationResult):
    signature_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class SignatureResult(OperationResult):
    proposal_status: Optional[ProposalStatus] = None
    is_verified: bool = False
    remaining_signatures: int = 0


class TimeoutSweepResult(OperationResult):
    escalated_approval_ids: List[int] = Field(default_factory=list)
    rejected_proposal_ids: List[int] = Field(default_factory=list)
    expired_signature_ids: List[int] = Field(default_factory=list)


class ApprovalProgress(BaseModel):
    current_level: int = 0
    total_levels: int = 0
    pending_approvals: int = 0
    completed_approvals: int = 0
    rejected_approvals: int = 0


class SignatureProgress(BaseModel):
    pending_signatures: int = 0
    completed_signatures: int = 0
    expired_signatures: int = 0
    total_signatures: int = 0


class WorkflowStatus(OperationResult):
    """
    Workflow status projection.

    WHY: Recomputed from the stored proposal, approval and signature rows
    on every call; never cached.
    """

    proposal_id: Optional[int] = None
    proposal_status: Optional[ProposalStatus] = None
    current_stage: WorkflowStage = WorkflowStage.DRAFT
    approval_progress: ApprovalProgress = Field(default_factory=ApprovalProgress)
    signature_progress: SignatureProgress = Field(default_factory=SignatureProgress)
    warnings: List[str] = Field(default_factory=list)
