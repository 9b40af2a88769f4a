"""
Proposal approval/signature workflow models.

WHAT: SQLAlchemy models for the approval chain configuration, per-approver
approval records, client signature requests and the notification outbox.

WHY: The workflow engine is stateless; everything it needs to advance a
proposal lives in these rows:
1. ApprovalChain: the configured levels, so the next level can be activated
2. ApprovalRecord: one row per (level, approver) once a level is active
3. SignatureRequest: one row per requested signer
4. WorkflowEvent: domain events written in the same transaction as the
   state change, turned into notifications by a separate dispatcher

HOW: Every row carries org_id for tenant scoping and proposal_id for
per-proposal aggregation.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from proposal_engine.models.base import Base, JSONType


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    """Non-native enum column storing lowercase values."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda enum: [e.value for e in enum],
    )


class ApprovalStatus(str, Enum):
    """Decision state of a single approval record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SignatureType(str, Enum):
    """How the signer is expected to sign."""

    ELECTRONIC = "electronic"
    DIGITAL = "digital"
    WET_SIGNATURE = "wet_signature"
    API_SIGNATURE = "api_signature"


class WorkflowEventType(str, Enum):
    """
    Domain events emitted by the workflow engine.

    WHY: The engine never sends notifications itself. It records what
    happened; the dispatcher decides how to tell people about it.
    """

    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_ESCALATED = "approval_escalated"
    PROPOSAL_APPROVED = "proposal_approved"
    PROPOSAL_REJECTED = "proposal_rejected"
    SIGNATURE_REQUESTED = "signature_requested"
    SIGNATURE_RECORDED = "signature_recorded"
    SIGNATURE_EXPIRED = "signature_expired"
    PROPOSAL_ACCEPTED = "proposal_accepted"


class ApprovalChain(Base):
    """
    Approval configuration attached to a proposal when approval starts.

    WHAT: Stores the validated level configuration and the sequential
    cursor (current_level).

    WHY: Activating level N+1 after level N completes needs the approvers
    and timeouts of level N+1, which are not in any approval record yet.

    levels format:
        [{"level": 1, "required_approvals": 1, "timeout_hours": 48,
          "approvers": [{"id": 7, "email": "a@x.com", "name": "Ann"}]}]
    """

    __tablename__ = "proposal_approval_chains"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    levels: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    parallel_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<ApprovalChain(proposal_id={self.proposal_id}, current_level={self.current_level})>"

    @property
    def level_numbers(self) -> List[int]:
        return sorted(int(level["level"]) for level in self.levels)

    @property
    def total_levels(self) -> int:
        return len(self.levels)

    def get_level(self, level_number: int) -> Optional[Dict[str, Any]]:
        for level in self.levels:
            if int(level["level"]) == level_number:
                return level
        return None

    def next_level_after(self, level_number: int) -> Optional[int]:
        later = [n for n in self.level_numbers if n > level_number]
        return later[0] if later else None


class ApprovalRecord(Base):
    """
    One approver's decision at one approval level.

    WHY: Created when a level is activated; immutable once decided except
    for comments. timeout_at drives the caller-invoked timeout sweep.
    """

    __tablename__ = "proposal_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_email: Mapped[str] = mapped_column(String(255), nullable=False)
    approver_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        _enum_column(ApprovalStatus, "approvalstatus"),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    timeout_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("proposal_id", "level", "approver_id", name="uq_approval_level_approver"),
        Index("ix_proposal_approvals_status_timeout", "status", "timeout_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRecord(id={self.id}, proposal_id={self.proposal_id}, "
            f"level={self.level}, status={self.status})>"
        )


class SignatureRequest(Base):
    """
    Outstanding request for a named party to sign a proposal.

    WHY: Terminal once signed_at is set (or declined); expires_at drives
    the caller-invoked expiry sweep. signature_data, ip_address,
    user_agent and location_data are opaque pass-through metadata.
    """

    __tablename__ = "proposal_signatures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    signer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    signer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    signature_type: Mapped[SignatureType] = mapped_column(
        _enum_column(SignatureType, "signaturetype"),
        nullable=False,
        default=SignatureType.ELECTRONIC,
    )
    verification_code: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    signature_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    location_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expiry_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<SignatureRequest(id={self.id}, proposal_id={self.proposal_id}, signer={self.signer_email})>"

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.signed_at is None and now > self.expires_at


class WorkflowEvent(Base):
    """
    Notification outbox row.

    WHAT: One domain event addressed to one recipient.

    WHY: Written in the same transaction as the state change it describes,
    so a notification is never sent for a rolled-back transition and a
    committed transition is never left without its notification.
    """

    __tablename__ = "proposal_workflow_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[WorkflowEventType] = mapped_column(
        _enum_column(WorkflowEventType, "workfloweventtype"),
        nullable=False,
    )
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_proposal_workflow_events_pending", "dispatched_at", "attempts"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowEvent(id={self.id}, type={self.event_type}, to={self.recipient_email})>"
