"""
Proposal models for priced offers, their line items, templates and versions.

WHAT: SQLAlchemy models representing a proposal sent to a client, the
items it prices, reusable templates and change-tracking snapshots.

WHY: Proposals are critical business documents that:
1. Define scope and deliverables (structured content sections)
2. Specify pricing (items, discounts, tax, final amount)
3. Progress through internal approval and client signature
4. Keep a version history of every edit made while in draft

HOW: Uses SQLAlchemy 2.0 with:
- Status enum for the approval/signature workflow
- JSON (JSONB on PostgreSQL) for flexible content
- Tenant scoping through a denormalized org_id on every row
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from proposal_engine.models.base import Base, JSONType, TimestampMixin


class ProposalStatus(str, Enum):
    """
    Proposal workflow status.

    WHY: Tracks proposal through the business process:
    - DRAFT: Being created/edited, not yet submitted for approval
    - PENDING_APPROVAL: Internal approval chain in progress
    - APPROVED: All approval levels complete; signatures may be requested
    - REJECTED: Declined by an approver or a signer (terminal)
    - ACCEPTED: Every requested signature collected (terminal)
    """

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


TERMINAL_STATUSES = frozenset({ProposalStatus.REJECTED, ProposalStatus.ACCEPTED})


class Proposal(TimestampMixin, Base):
    """
    Client proposal model.

    WHAT: A priced offer document for one client.

    WHY: Formalizes the business offer:
    - Documents scope of work in structured content sections
    - Stores the pricing breakdown computed from its items
    - Tracks approval and signature progress through its status

    Attributes:
        id: Primary key
        org_id: Tenant owning the proposal
        client_id: Client receiving the proposal (external directory)
        template_id: Template the proposal was built from
        proposal_number: Human-readable unique number
        content: Structured sections (overview, scope, pricing, ...)
        status: Current workflow status
        total_amount: Subtotal after item-level discounts
        discount_amount: Global discount applied to the subtotal
        tax_amount: Tax on the discounted subtotal
        final_amount: Discounted subtotal plus tax
        validation_warnings: Non-blocking warnings from the last save
    """

    __tablename__ = "proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    template_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("proposal_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    proposal_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # WHY: values_callable stores the lowercase value, not the enum name
    status: Mapped[ProposalStatus] = mapped_column(
        SQLEnum(
            ProposalStatus,
            name="proposalstatus",
            native_enum=False,
            length=32,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=ProposalStatus.DRAFT,
    )

    # Pricing
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    tax_rate_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    global_discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=0
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    # Terms
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    terms_and_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Contacts used for notifications
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    validation_warnings: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Lifecycle timestamps
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_proposals_org_status", "org_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Proposal(id={self.id}, number={self.proposal_number}, status={self.status})>"

    @property
    def is_editable(self) -> bool:
        """Only draft proposals may be edited."""
        return self.status == ProposalStatus.DRAFT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ProposalItem(Base):
    """
    Priced line item owned by a proposal.

    WHY: Items carry the raw pricing inputs (quantity, unit price, item
    discount); total_price is derived and stored for display and reporting.
    """

    __tablename__ = "proposal_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    item_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<ProposalItem(id={self.id}, proposal_id={self.proposal_id}, name={self.name})>"


class ProposalTemplate(TimestampMixin, Base):
    """
    Reusable content/pricing/validation skeleton.

    WHY: Templates are referenced by proposals but have their own lifecycle;
    deleting a template never deletes the proposals built from it.

    Structure:
        template_content: {"sections": [{"id": "overview", "type": ...}, ...]}
        pricing_structure: {"currency": "USD", "tax_rate": 10}
        validation_rules: {"min_amount": 100, "max_amount": 50000}
    """

    __tablename__ = "proposal_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    template_content: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    pricing_structure: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    validation_rules: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ProposalTemplate(id={self.id}, name={self.name})>"


class ProposalVersion(Base):
    """
    Snapshot of a proposal and its items taken on every draft update.

    WHY: Change tracking lets users compare what was edited between saves.
    """

    __tablename__ = "proposal_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content_snapshot: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    changes_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False, default="update")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("proposal_id", "version_number", name="uq_proposal_version"),
    )

    def __repr__(self) -> str:
        return f"<ProposalVersion(proposal_id={self.proposal_id}, v={self.version_number})>"
