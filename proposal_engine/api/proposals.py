"""
Proposal drafting API endpoints.

WHAT: RESTful API for validating, pricing, saving and previewing proposals
and for managing proposal templates.

WHY: Drafting is form-driven:
1. Validation and pricing run without persistence while a user types
2. Saving returns field-addressable errors instead of failing
3. Previews render the stored proposal as the client will see it

HOW: FastAPI router over ProposalService with:
- Org-scoped queries (X-Org-ID header)
- One transaction per request (get_db)
- AppException subclasses rendered by the global exception handlers
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import HTMLResponse

from proposal_engine.core.deps import get_org_id, get_proposal_service
from proposal_engine.models.proposal import ProposalStatus
from proposal_engine.schemas.proposal import (
    PricingRequest,
    PricingResult,
    ProposalDraft,
    ProposalDuplicateRequest,
    ProposalListResponse,
    ProposalResponse,
    ProposalSaveResponse,
    ProposalStats,
    ProposalTemplateInput,
    ProposalTemplateResponse,
    ProposalVersionResponse,
    TemplateSaveResponse,
    ValidationResult,
)
from proposal_engine.services.proposal_service import ProposalService


router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.post(
    "/validate",
    response_model=ValidationResult,
    summary="Validate a draft",
    description="Run every validation rule over a draft without saving it",
)
async def validate_draft(
    draft: ProposalDraft,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ValidationResult:
    return service.validate_draft(draft)


@router.post(
    "/price",
    response_model=PricingResult,
    summary="Price items",
    description="Compute subtotal, discount, tax and final amount without saving",
)
async def price_items(
    request: PricingRequest,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> PricingResult:
    return service.price(request)


@router.post(
    "",
    response_model=ProposalSaveResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create proposal",
    description="Validate, price and save a new draft proposal",
)
async def create_proposal(
    draft: ProposalDraft,
    response: Response,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalSaveResponse:
    """
    Create a draft proposal.

    Returns 201 with the stored proposal, or 400 with the validation
    verdict when the draft has errors (nothing is saved).
    """
    result = await service.save_proposal(org_id, draft)
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result


@router.get(
    "",
    response_model=ProposalListResponse,
    summary="List proposals",
    description="Get paginated list of proposals for the organization",
)
async def list_proposals(
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum items to return"),
    status_filter: Optional[ProposalStatus] = Query(
        default=None,
        alias="status",
        description="Filter by proposal status",
    ),
    client_id: Optional[int] = Query(default=None, description="Filter by client ID"),
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalListResponse:
    return await service.list_proposals(
        org_id,
        status=status_filter,
        client_id=client_id,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=ProposalStats,
    summary="Proposal statistics",
    description="Counts by status and value totals for the organization",
)
async def get_proposal_stats(
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalStats:
    return await service.get_stats(org_id)


# ============================================================================
# Templates
# ============================================================================


@router.get(
    "/templates",
    response_model=List[ProposalTemplateResponse],
    summary="List templates",
    description="Active proposal templates of the organization",
)
async def list_templates(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=100),
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> List[ProposalTemplateResponse]:
    return await service.list_templates(org_id, skip=skip, limit=limit)


@router.post(
    "/templates",
    response_model=TemplateSaveResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create template",
)
async def create_template(
    data: ProposalTemplateInput,
    response: Response,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> TemplateSaveResponse:
    result = await service.save_template(org_id, data)
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result


@router.put(
    "/templates/{template_id}",
    response_model=TemplateSaveResponse,
    summary="Update template",
)
async def update_template(
    template_id: int,
    data: ProposalTemplateInput,
    response: Response,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> TemplateSaveResponse:
    result = await service.save_template(org_id, data, template_id=template_id)
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result


# ============================================================================
# Single proposal
# ============================================================================


@router.get(
    "/{proposal_id}",
    response_model=ProposalResponse,
    summary="Get proposal",
)
async def get_proposal(
    proposal_id: int,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalResponse:
    return await service.get_proposal(proposal_id, org_id)


@router.put(
    "/{proposal_id}",
    response_model=ProposalSaveResponse,
    summary="Update proposal",
    description="Validate, price and save a draft proposal (drafts only)",
)
async def update_proposal(
    proposal_id: int,
    draft: ProposalDraft,
    response: Response,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalSaveResponse:
    """
    Update a draft proposal.

    Raises:
        ResourceNotFoundError (404): If proposal not found
        InvalidStateTransitionError (409): If the proposal is not a draft
    """
    result = await service.save_proposal(org_id, draft, proposal_id=proposal_id)
    if not result.success:
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result


@router.post(
    "/{proposal_id}/duplicate",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate proposal",
    description="Copy a proposal and its items into a new draft",
)
async def duplicate_proposal(
    proposal_id: int,
    data: Optional[ProposalDuplicateRequest] = None,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalResponse:
    title = data.title if data else None
    return await service.duplicate_proposal(proposal_id, org_id, title=title)


@router.get(
    "/{proposal_id}/preview",
    response_class=HTMLResponse,
    summary="Preview proposal",
    description="Render the proposal as HTML",
)
async def preview_proposal(
    proposal_id: int,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> HTMLResponse:
    return HTMLResponse(content=await service.preview(proposal_id, org_id))


@router.get(
    "/{proposal_id}/versions",
    response_model=List[ProposalVersionResponse],
    summary="Version history",
    description="Snapshots taken on every save, newest first",
)
async def get_versions(
    proposal_id: int,
    org_id: int = Depends(get_org_id),
    service: ProposalService = Depends(get_proposal_service),
) -> List[ProposalVersionResponse]:
    return await service.get_versions(proposal_id, org_id)
