"""
Proposal workflow API endpoints.

WHAT: RESTful API over the WorkflowEngine: start approval, record
decisions, request and collect signatures, workflow status and the
timeout sweep.

WHY: The engine returns ``{success, errors}`` result objects instead of
raising. The HTTP layer keeps that body and only picks a status code
from the kind of the first error, so clients get both a meaningful code
and the stage-addressable messages.

HOW: FastAPI router with:
- Org-scoped operations (X-Org-ID header)
- One transaction per request; a failed step has already been rolled
  back by the engine when it reaches this layer
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from proposal_engine.core.deps import get_org_id, get_workflow_engine
from proposal_engine.middleware.request_context import get_request_context
from proposal_engine.schemas.workflow import (
    ApprovalChainConfig,
    ApprovalChainResult,
    ApprovalDecision,
    ApprovalDecisionResult,
    OperationResult,
    SignatureDecline,
    SignaturePayload,
    SignatureRequestCreate,
    SignatureRequestResult,
    SignatureResult,
    TimeoutSweepResult,
    WorkflowErrorKind,
    WorkflowStatus,
)
from proposal_engine.services.workflow_engine import WorkflowEngine


router = APIRouter(prefix="/workflows", tags=["workflows"])

ERROR_STATUS_CODES = {
    WorkflowErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    WorkflowErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    WorkflowErrorKind.POLICY: status.HTTP_409_CONFLICT,
    WorkflowErrorKind.CONFIGURATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    WorkflowErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _apply_status(result: OperationResult, response: Response) -> None:
    """Set the HTTP status of a failed result from its first error kind."""
    if not result.success and result.errors:
        response.status_code = ERROR_STATUS_CODES[result.errors[0].kind]


@router.post(
    "/proposals/{proposal_id}/approval",
    response_model=ApprovalChainResult,
    status_code=status.HTTP_201_CREATED,
    summary="Start approval",
    description="Submit a draft proposal to its approval chain",
)
async def start_approval(
    proposal_id: int,
    config: ApprovalChainConfig,
    response: Response,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> ApprovalChainResult:
    """
    Start the approval process.

    Every problem (status, chain configuration, proposal validation) is
    reported at once; nothing is written when any is found.
    """
    result = await engine.start_approval_chain(proposal_id, org_id, config)
    _apply_status(result, response)
    return result


@router.post(
    "/approvals/{approval_id}/decision",
    response_model=ApprovalDecisionResult,
    summary="Decide approval",
    description="Approve or reject at the approver's level",
)
async def decide_approval(
    approval_id: int,
    data: ApprovalDecision,
    response: Response,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> ApprovalDecisionResult:
    result = await engine.process_approval(approval_id, org_id, data.decision, data.comments)
    _apply_status(result, response)
    return result


@router.post(
    "/proposals/{proposal_id}/signatures",
    response_model=SignatureRequestResult,
    status_code=status.HTTP_201_CREATED,
    summary="Request signature",
    description="Ask a signer to sign an approved proposal",
)
async def request_signature(
    proposal_id: int,
    data: SignatureRequestCreate,
    response: Response,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SignatureRequestResult:
    """
    Create a signature request.

    The verification code is not part of the response; it reaches the
    signer through the signature_requested notification.
    """
    result = await engine.request_signature(proposal_id, org_id, data)
    _apply_status(result, response)
    return result


@router.post(
    "/signatures/{signature_id}/sign",
    response_model=SignatureResult,
    summary="Sign",
    description="Record a signature; the last one accepts the proposal",
)
async def sign(
    signature_id: int,
    response: Response,
    data: Optional[SignaturePayload] = None,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SignatureResult:
    payload = data or SignaturePayload()
    context = get_request_context()
    if context is not None:
        payload = payload.model_copy(
            update={
                "ip_address": payload.ip_address or context.ip_address,
                "user_agent": payload.user_agent or context.user_agent,
            }
        )

    result = await engine.process_signature(signature_id, org_id, payload)
    _apply_status(result, response)
    return result


@router.post(
    "/signatures/{signature_id}/decline",
    response_model=SignatureResult,
    summary="Decline",
    description="Decline to sign; the proposal is rejected",
)
async def decline(
    signature_id: int,
    response: Response,
    data: Optional[SignatureDecline] = None,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SignatureResult:
    result = await engine.decline_signature(signature_id, org_id, data.reason if data else None)
    _apply_status(result, response)
    return result


@router.get(
    "/proposals/{proposal_id}/status",
    response_model=WorkflowStatus,
    summary="Workflow status",
    description="Current stage and approval/signature progress",
)
async def get_workflow_status(
    proposal_id: int,
    response: Response,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStatus:
    result = await engine.get_workflow_status(proposal_id, org_id)
    _apply_status(result, response)
    return result


@router.post(
    "/sweep",
    response_model=TimeoutSweepResult,
    summary="Run timeout sweep",
    description="Act on overdue approvals and expired signature requests of the organization",
)
async def run_sweep(
    response: Response,
    org_id: int = Depends(get_org_id),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> TimeoutSweepResult:
    result = await engine.check_timeouts(org_id=org_id)
    _apply_status(result, response)
    return result
