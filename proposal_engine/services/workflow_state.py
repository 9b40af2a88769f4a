"""
Proposal lifecycle state machine.

WHAT: The single table of legal proposal status transitions.

WHY: Status checks live here instead of being scattered across call
sites as ad hoc comparisons. Anything not in the table is an
InvalidStateTransitionError.

HOW:
    draft            --submit-->  pending_approval
    pending_approval --approve--> approved
    pending_approval --reject-->  rejected
    approved         --reject-->  rejected   (signer declined)
    approved         --accept-->  accepted   (all signatures collected)
"""

from enum import Enum
from typing import Dict, Tuple

from proposal_engine.core.exceptions import InvalidStateTransitionError
from proposal_engine.models.proposal import ProposalStatus


class WorkflowTrigger(str, Enum):
    """Events that move a proposal between statuses."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    ACCEPT = "accept"


TRANSITIONS: Dict[Tuple[ProposalStatus, WorkflowTrigger], ProposalStatus] = {
    (ProposalStatus.DRAFT, WorkflowTrigger.SUBMIT): ProposalStatus.PENDING_APPROVAL,
    (ProposalStatus.PENDING_APPROVAL, WorkflowTrigger.APPROVE): ProposalStatus.APPROVED,
    (ProposalStatus.PENDING_APPROVAL, WorkflowTrigger.REJECT): ProposalStatus.REJECTED,
    (ProposalStatus.APPROVED, WorkflowTrigger.REJECT): ProposalStatus.REJECTED,
    (ProposalStatus.APPROVED, WorkflowTrigger.ACCEPT): ProposalStatus.ACCEPTED,
}

# Stage names used in error messages
TRIGGER_STAGES = {
    WorkflowTrigger.SUBMIT: "approval",
    WorkflowTrigger.APPROVE: "approval",
    WorkflowTrigger.REJECT: "approval",
    WorkflowTrigger.ACCEPT: "signature",
}


def can_transition(status: ProposalStatus, trigger: WorkflowTrigger) -> bool:
    return (ProposalStatus(status), trigger) in TRANSITIONS


def transition(status: ProposalStatus, trigger: WorkflowTrigger) -> ProposalStatus:
    """
    Compute the status reached by applying ``trigger`` to ``status``.

    Raises:
        InvalidStateTransitionError: If the transition is not legal
    """
    status = ProposalStatus(status)
    try:
        return TRANSITIONS[(status, trigger)]
    except KeyError:
        raise InvalidStateTransitionError(
            message=f"Cannot {trigger.value} a proposal in status '{status.value}'",
            stage=TRIGGER_STAGES[trigger],
            current_status=status.value,
            trigger=trigger.value,
        ) from None
