"""
Pydantic schemas for proposal endpoints.

WHAT: Request/response schemas for proposal drafting, pricing, validation
and templates.

WHY: Schemas define API contracts for proposal operations:
1. Carry drafts and line items into the validator
2. Document API for OpenAPI/Swagger
3. Give pricing and validation verdicts a stable shape

HOW: Uses Pydantic v2. Draft inputs are deliberately permissive: a missing
title or a negative quantity is reported by ProposalValidator as a
field-addressable error instead of being rejected at parse time.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Any, Dict, List

from pydantic import BaseModel, Field

from proposal_engine.models.proposal import ProposalStatus


# Far above any real quantity or price; keeps Decimal arithmetic bounded.
ITEM_VALUE_LIMIT = Decimal("1e15")


# ============================================================================
# Inputs
# ============================================================================


class ProposalItemInput(BaseModel):
    """
    Proposal line item input.

    WHAT: One priced line of a proposal.

    WHY: Only magnitude limits here. PricingCalculator reports an invalid
    quantity or price as an error string while still producing a
    best-effort figure.
    """

    name: str = Field(default="", max_length=255, description="Item name")
    description: Optional[str] = Field(default=None, description="Item description")
    quantity: Decimal = Field(
        default=Decimal("1"), ge=-ITEM_VALUE_LIMIT, le=ITEM_VALUE_LIMIT, description="Quantity (must be > 0)"
    )
    unit_price: Decimal = Field(
        default=Decimal("0"), ge=-ITEM_VALUE_LIMIT, le=ITEM_VALUE_LIMIT, description="Price per unit (must be >= 0)"
    )
    discount_percent: Decimal = Field(default=Decimal("0"), description="Item discount 0-100")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Managed backup",
                "quantity": 2,
                "unit_price": 100.00,
                "discount_percent": 0,
            }
        }


class ProposalDraft(BaseModel):
    """
    Proposal draft (create or update) request schema.

    WHAT: Partial proposal plus its items.

    WHY: Every field is optional so the validator can report all missing
    fields in one pass.
    """

    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = Field(default=None, max_length=255)
    owner_email: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Receives approval/rejection/acceptance notifications",
    )
    template_id: Optional[int] = None
    content: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Structured sections (overview, scope, pricing, ...)",
    )
    currency: Optional[str] = Field(default=None, description="ISO currency code")
    tax_rate_percent: Optional[Decimal] = Field(default=None, description="Tax rate, defaults to configuration")
    global_discount_percent: Decimal = Field(default=Decimal("0"))
    valid_until: Optional[datetime] = None
    terms_and_conditions: Optional[str] = None
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    items: List[ProposalItemInput] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Managed IT Services 2026",
                "client_id": 42,
                "client_name": "Acme Corp",
                "content": {
                    "overview": "Fully managed IT for Acme.",
                    "scope": ["Helpdesk", "Backups"],
                    "pricing": {"model": "monthly"},
                },
                "currency": "USD",
                "items": [{"name": "Helpdesk", "quantity": 1, "unit_price": 1500}],
            }
        }


class PricingRequest(BaseModel):
    """Ad-hoc pricing request (no persistence)."""

    items: List[ProposalItemInput] = Field(default_factory=list)
    tax_rate_percent: Optional[Decimal] = None
    global_discount_percent: Decimal = Decimal("0")


class ProposalDuplicateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255, description="Defaults to '<title> (Copy)'")


class ProposalTemplateInput(BaseModel):
    """
    Proposal template create/update request schema.

    WHY: Permissive for the same reason as ProposalDraft; template
    validation reports every problem at once.
    """

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    template_content: Optional[Dict[str, Any]] = None
    pricing_structure: Optional[Dict[str, Any]] = None
    validation_rules: Optional[Dict[str, Any]] = None
    is_active: bool = True


# ============================================================================
# Verdicts
# ============================================================================


class FieldError(BaseModel):
    """Validation error addressable to a form field."""

    field: str
    message: str


class PricingResult(BaseModel):
    """
    Pricing computation output.

    WHY: ``errors`` never aborts the computation. Callers decide whether to
    block on a non-empty list.
    """

    subtotal: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    final_amount: Decimal = Decimal("0.00")
    errors: List[str] = Field(default_factory=list)


class ContentValidation(BaseModel):
    """
    Best-effort content lint flags.

    WHY: Independent heuristics, surfaced only as warnings.
    """

    spell_check: bool = True
    grammar_check: bool = True
    professional_tone: bool = True
    completeness: bool = True


class ValidationResult(BaseModel):
    """Pass/fail/warn verdict for a proposal draft or template."""

    is_valid: bool
    errors: List[FieldError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def error_fields(self) -> List[str]:
        return [error.field for error in self.errors]


# ============================================================================
# Responses
# ============================================================================


class ProposalItemResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    total_price: Decimal
    item_order: int

    class Config:
        from_attributes = True


class ProposalResponse(BaseModel):
    """
    Proposal response schema.

    WHAT: Stored proposal with its priced items.
    """

    id: int
    org_id: int
    proposal_number: str
    client_id: int
    client_name: Optional[str] = None
    owner_email: Optional[str] = None
    template_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    content: Dict[str, Any]
    status: ProposalStatus
    currency: str
    tax_rate_percent: Decimal
    global_discount_percent: Decimal
    total_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    final_amount: Decimal
    valid_until: Optional[datetime] = None
    terms_and_conditions: Optional[str] = None
    payment_terms: Optional[str] = None
    delivery_terms: Optional[str] = None
    validation_warnings: List[str] = Field(default_factory=list)
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    accepted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    is_editable: bool
    items: List[ProposalItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ProposalSaveResponse(BaseModel):
    """
    Result of saving a draft.

    WHY: A draft with errors is not persisted; the verdict is returned
    instead of an exception so forms can highlight fields.
    """

    success: bool
    proposal: Optional[ProposalResponse] = None
    validation: ValidationResult


class ProposalListResponse(BaseModel):
    items: List[ProposalResponse]
    total: int
    skip: int
    limit: int


class ProposalVersionResponse(BaseModel):
    id: int
    proposal_id: int
    version_number: int
    change_type: str
    changes_summary: Optional[str] = None
    content_snapshot: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class ProposalStats(BaseModel):
    """
    Proposal statistics for dashboards.

    WHAT: Counts by status and value totals for one tenant.
    """

    total: int
    by_status: Dict[str, int]
    total_value: Decimal
    accepted_value: Decimal
    pipeline_value: Decimal = Field(description="Value of pending_approval and approved proposals")


class ProposalTemplateResponse(BaseModel):
    id: int
    org_id: int
    name: str
    description: Optional[str] = None
    template_content: Dict[str, Any]
    pricing_structure: Optional[Dict[str, Any]] = None
    validation_rules: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TemplateSaveResponse(BaseModel):
    success: bool
    template: Optional[ProposalTemplateResponse] = None
    validation: ValidationResult
