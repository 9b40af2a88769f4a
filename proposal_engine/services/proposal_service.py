"""
Proposal Service.

WHAT: Business logic for drafting proposals: save (create/update),
duplicate, preview, templates, version history and statistics.

WHY: The service layer:
1. Blocks persistence of drafts with validation errors
2. Stores pricing computed from the items, never figures sent by clients
3. Keeps a version snapshot of every save while the proposal is a draft
4. Leaves everything after draft to the WorkflowEngine

HOW: Coordinates ProposalValidator, PricingCalculator and the proposal
DAOs inside the caller's transaction. Domain problems raise
AppException subclasses, rendered by the API exception handlers.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.core.clock import Clock, utcnow, as_naive_utc
from proposal_engine.core.config import settings
from proposal_engine.core.exceptions import (
    InvalidStateTransitionError,
    PolicyViolation,
    ResourceNotFoundError,
)
from proposal_engine.core.tokens import generate_proposal_number
from proposal_engine.dao.proposal import (
    ProposalDAO,
    ProposalItemDAO,
    ProposalTemplateDAO,
    ProposalVersionDAO,
)
from proposal_engine.models.proposal import (
    Proposal,
    ProposalItem,
    ProposalStatus,
    ProposalTemplate,
)
from proposal_engine.schemas.proposal import (
    PricingRequest,
    PricingResult,
    ProposalDraft,
    ProposalItemResponse,
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
from proposal_engine.services.pricing import PricingCalculator, line_total
from proposal_engine.services.proposal_validator import ProposalValidator
from proposal_engine.services.template_service import TemplateService, get_template_service


logger = logging.getLogger(__name__)

# Number collisions are resolved by drawing again
MAX_NUMBER_ATTEMPTS = 5

# Proposal columns written from a draft, compared to build the change summary
DRAFT_FIELDS = (
    "title",
    "description",
    "client_id",
    "client_name",
    "owner_email",
    "template_id",
    "content",
    "currency",
    "tax_rate_percent",
    "global_discount_percent",
    "valid_until",
    "terms_and_conditions",
    "payment_terms",
    "delivery_terms",
)

COPIED_FIELDS = DRAFT_FIELDS + (
    "total_amount",
    "discount_amount",
    "tax_amount",
    "final_amount",
    "validation_warnings",
)


class ProposalService:
    """
    Service for proposal drafting.

    WHAT: Provides the operations behind the proposal endpoints.

    Example:
        service = ProposalService(session)
        saved = await service.save_proposal(org_id, draft)
        if not saved.success:
            return saved.validation.errors
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        validator: Optional[ProposalValidator] = None,
        pricing: Optional[PricingCalculator] = None,
        templates: Optional[TemplateService] = None,
    ):
        """
        Initialize ProposalService.

        Args:
            session: Async database session
            clock: Returns the current naive UTC time
            validator: Draft validator (shares ``pricing`` when omitted)
            pricing: Pricing calculator
            templates: Template renderer for previews
        """
        self.session = session
        self.clock = clock
        self.pricing = pricing or PricingCalculator()
        self.validator = validator or ProposalValidator(pricing=self.pricing, clock=clock)
        self.templates = templates or get_template_service()

        self.proposals = ProposalDAO(session)
        self.items = ProposalItemDAO(session)
        self.template_dao = ProposalTemplateDAO(session)
        self.versions = ProposalVersionDAO(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_proposal(self, proposal_id: int, org_id: int) -> Proposal:
        proposal = await self.proposals.get_by_id_and_org(proposal_id, org_id)
        if proposal is None:
            raise ResourceNotFoundError(
                message=f"Proposal {proposal_id} not found",
                resource_type="Proposal",
                resource_id=proposal_id,
            )
        return proposal

    async def _new_proposal_number(self) -> str:
        now = self.clock()
        for _ in range(MAX_NUMBER_ATTEMPTS):
            number = generate_proposal_number(now)
            if not await self.proposals.exists(proposal_number=number):
                return number
        raise PolicyViolation(message="Could not allocate a unique proposal number", stage="draft")

    @staticmethod
    def _to_response(proposal: Proposal, items: Sequence[ProposalItem]) -> ProposalResponse:
        response = ProposalResponse.model_validate(proposal)
        response.items = [ProposalItemResponse.model_validate(item) for item in items]
        return response

    def _draft_values(self, draft: ProposalDraft, pricing: PricingResult) -> Dict[str, Any]:
        """Column values for a validated draft, pricing included."""
        tax_rate = (
            self.pricing.tax_rate_percent if draft.tax_rate_percent is None else draft.tax_rate_percent
        )
        return {
            "title": draft.title.strip(),
            "description": draft.description,
            "client_id": draft.client_id,
            "client_name": draft.client_name,
            "owner_email": draft.owner_email,
            "template_id": draft.template_id,
            "content": draft.content,
            "currency": (draft.currency or settings.DEFAULT_CURRENCY).upper(),
            "tax_rate_percent": tax_rate,
            "global_discount_percent": draft.global_discount_percent,
            "valid_until": as_naive_utc(draft.valid_until),
            "terms_and_conditions": draft.terms_and_conditions,
            "payment_terms": draft.payment_terms,
            "delivery_terms": draft.delivery_terms,
            "total_amount": pricing.subtotal,
            "discount_amount": pricing.discount_amount,
            "tax_amount": pricing.tax_amount,
            "final_amount": pricing.final_amount,
        }

    @staticmethod
    def _item_rows(items: Sequence[Any]) -> List[Dict[str, Any]]:
        return [
            {
                "name": item.name,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "discount_percent": item.discount_percent,
                "total_price": line_total(item),
            }
            for item in items
        ]

    async def _snapshot(
        self,
        proposal: Proposal,
        items: Sequence[ProposalItem],
        change_type: str,
        changes_summary: Optional[str] = None,
    ) -> None:
        """Record a version snapshot of the proposal and its items."""
        await self.versions.create(
            org_id=proposal.org_id,
            proposal_id=proposal.id,
            version_number=await self.versions.get_next_version_number(proposal.id),
            content_snapshot=self._to_response(proposal, items).model_dump(mode="json"),
            change_type=change_type,
            changes_summary=changes_summary,
            created_at=self.clock(),
        )

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    def validate_draft(self, draft: ProposalDraft) -> ValidationResult:
        """Validate a draft without persisting anything."""
        return self.validator.validate(draft, draft.items)

    def price(self, request: PricingRequest) -> PricingResult:
        """Price items without persisting anything."""
        return self.pricing.calculate(
            request.items,
            tax_rate_percent=request.tax_rate_percent,
            global_discount_percent=request.global_discount_percent,
        )

    async def save_proposal(
        self,
        org_id: int,
        draft: ProposalDraft,
        proposal_id: Optional[int] = None,
    ) -> ProposalSaveResponse:
        """
        Create or update a draft proposal.

        WHAT:
        - Validates first; a draft with errors is not persisted
        - Prices the items and stores the figures with the warnings
        - Replaces the items (ordered, with derived total_price)
        - Records a version snapshot (create or update)

        Args:
            org_id: Tenant
            draft: Proposal fields and items
            proposal_id: Existing proposal to update, None to create

        Returns:
            ProposalSaveResponse with the stored proposal or the verdict

        Raises:
            ResourceNotFoundError: If proposal_id does not exist for the tenant
            InvalidStateTransitionError: If the proposal is no longer a draft
        """
        existing: Optional[Proposal] = None
        if proposal_id is not None:
            existing = await self._get_proposal(proposal_id, org_id)
            if existing.status != ProposalStatus.DRAFT:
                raise InvalidStateTransitionError(
                    message=f"Only draft proposals can be edited (status: {ProposalStatus(existing.status).value})",
                    stage="draft",
                    current_status=ProposalStatus(existing.status).value,
                )

        verdict = self.validator.validate(draft, draft.items)
        if not verdict.is_valid:
            logger.info(
                f"Proposal draft rejected with {len(verdict.errors)} error(s)",
                extra={"org_id": org_id, "fields": verdict.error_fields()},
            )
            return ProposalSaveResponse(success=False, validation=verdict)

        pricing = self.pricing.calculate(
            draft.items,
            tax_rate_percent=draft.tax_rate_percent,
            global_discount_percent=draft.global_discount_percent,
        )
        values = self._draft_values(draft, pricing)
        values["validation_warnings"] = list(verdict.warnings)

        if existing is None:
            proposal = await self.proposals.create(
                org_id=org_id,
                proposal_number=await self._new_proposal_number(),
                status=ProposalStatus.DRAFT,
                **values,
            )
            change_type, summary = "create", "Proposal created"
        else:
            changed = [
                field for field in DRAFT_FIELDS if getattr(existing, field) != values[field]
            ]
            saved = await self.proposals.update_where(
                existing.id,
                {"status": ProposalStatus.DRAFT},
                updated_at=self.clock(),
                **values,
            )
            if not saved:
                raise InvalidStateTransitionError(
                    message="Only draft proposals can be edited",
                    stage="draft",
                )
            proposal = existing
            change_type = "update"
            summary = f"Updated {', '.join(changed)}" if changed else "Items updated"

        items = await self.items.replace_items(proposal.id, org_id, self._item_rows(draft.items))
        await self._snapshot(proposal, items, change_type, summary)

        logger.info(
            f"Proposal {proposal.proposal_number} saved ({change_type})",
            extra={
                "org_id": org_id,
                "proposal_id": proposal.id,
                "final_amount": str(proposal.final_amount),
                "warnings": len(verdict.warnings),
            },
        )
        return ProposalSaveResponse(
            success=True,
            proposal=self._to_response(proposal, items),
            validation=verdict,
        )

    async def get_proposal(self, proposal_id: int, org_id: int) -> ProposalResponse:
        proposal = await self._get_proposal(proposal_id, org_id)
        items = await self.items.get_for_proposal(proposal.id, org_id)
        return self._to_response(proposal, items)

    async def list_proposals(
        self,
        org_id: int,
        status: Optional[ProposalStatus] = None,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> ProposalListResponse:
        """List proposals (with items) for a tenant, newest first."""
        proposals = await self.proposals.list_for_org(
            org_id, status=status, client_id=client_id, skip=skip, limit=limit
        )
        filters: Dict[str, Any] = {"org_id": org_id}
        if status is not None:
            filters["status"] = status
        if client_id is not None:
            filters["client_id"] = client_id

        responses = []
        for proposal in proposals:
            items = await self.items.get_for_proposal(proposal.id, org_id)
            responses.append(self._to_response(proposal, items))

        return ProposalListResponse(
            items=responses,
            total=await self.proposals.count(**filters),
            skip=skip,
            limit=limit,
        )

    async def duplicate_proposal(
        self,
        proposal_id: int,
        org_id: int,
        title: Optional[str] = None,
    ) -> ProposalResponse:
        """
        Copy a proposal and its items into a new draft.

        WHAT: New number, status draft, lifecycle dates left empty. The
        title defaults to "<title> (Copy)".
        """
        source = await self._get_proposal(proposal_id, org_id)
        source_items = await self.items.get_for_proposal(source.id, org_id)

        values = {field: getattr(source, field) for field in COPIED_FIELDS}
        values["title"] = title or f"{source.title} (Copy)"

        proposal = await self.proposals.create(
            org_id=org_id,
            proposal_number=await self._new_proposal_number(),
            status=ProposalStatus.DRAFT,
            **values,
        )
        items = await self.items.replace_items(proposal.id, org_id, self._item_rows(source_items))
        await self._snapshot(proposal, items, "create", f"Duplicated from {source.proposal_number}")

        logger.info(
            f"Proposal {source.proposal_number} duplicated as {proposal.proposal_number}",
            extra={"org_id": org_id, "source_id": source.id, "proposal_id": proposal.id},
        )
        return self._to_response(proposal, items)

    async def preview(self, proposal_id: int, org_id: int) -> str:
        """Render the HTML preview of a stored proposal."""
        proposal = await self._get_proposal(proposal_id, org_id)
        items = await self.items.get_for_proposal(proposal.id, org_id)
        return self.templates.render_proposal_preview(proposal, items)

    async def get_versions(self, proposal_id: int, org_id: int) -> List[ProposalVersionResponse]:
        proposal = await self._get_proposal(proposal_id, org_id)
        versions = await self.versions.get_for_proposal(proposal.id, org_id)
        return [ProposalVersionResponse.model_validate(version) for version in versions]

    async def get_stats(self, org_id: int) -> ProposalStats:
        """
        Get proposal statistics for a tenant.

        WHAT: Counts by status, total value, accepted value and pipeline
        value (pending_approval plus approved).
        """
        by_status = await self.proposals.count_by_status(org_id)
        pipeline = await self.proposals.calculate_total_value(org_id, ProposalStatus.PENDING_APPROVAL)
        pipeline += await self.proposals.calculate_total_value(org_id, ProposalStatus.APPROVED)

        return ProposalStats(
            total=sum(by_status.values()),
            by_status={status.value: by_status.get(status.value, 0) for status in ProposalStatus},
            total_value=await self.proposals.calculate_total_value(org_id),
            accepted_value=await self.proposals.calculate_total_value(org_id, ProposalStatus.ACCEPTED),
            pipeline_value=pipeline,
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def save_template(
        self,
        org_id: int,
        data: ProposalTemplateInput,
        template_id: Optional[int] = None,
    ) -> TemplateSaveResponse:
        """
        Create or update a proposal template after validating it.

        Raises:
            ResourceNotFoundError: If template_id does not exist for the tenant
        """
        existing: Optional[ProposalTemplate] = None
        if template_id is not None:
            existing = await self.template_dao.get_by_id_and_org(template_id, org_id)
            if existing is None:
                raise ResourceNotFoundError(
                    message=f"Template {template_id} not found",
                    resource_type="ProposalTemplate",
                    resource_id=template_id,
                )

        verdict = self.validator.validate_template(data)
        if not verdict.is_valid:
            return TemplateSaveResponse(success=False, validation=verdict)

        values = data.model_dump()
        values["name"] = values["name"].strip()
        if existing is None:
            template = await self.template_dao.create(org_id=org_id, **values)
        else:
            template = await self.template_dao.update(existing.id, **values)

        logger.info(
            f"Proposal template '{template.name}' saved",
            extra={"org_id": org_id, "template_id": template.id},
        )
        return TemplateSaveResponse(
            success=True,
            template=ProposalTemplateResponse.model_validate(template),
            validation=verdict,
        )

    async def list_templates(
        self,
        org_id: int,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ProposalTemplateResponse]:
        templates = await self.template_dao.get_active(org_id, skip=skip, limit=limit)
        return [ProposalTemplateResponse.model_validate(template) for template in templates]
