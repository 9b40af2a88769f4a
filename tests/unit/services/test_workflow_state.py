"""
Unit tests for the proposal status transition table.
"""

import pytest

from proposal_engine.core.exceptions import InvalidStateTransitionError
from proposal_engine.models.proposal import ProposalStatus
from proposal_engine.services.workflow_state import (
    TRANSITIONS,
    WorkflowTrigger,
    can_transition,
    transition,
)


class TestTransition:

    @pytest.mark.parametrize(
        "status,trigger,expected",
        [
            (ProposalStatus.DRAFT, WorkflowTrigger.SUBMIT, ProposalStatus.PENDING_APPROVAL),
            (ProposalStatus.PENDING_APPROVAL, WorkflowTrigger.APPROVE, ProposalStatus.APPROVED),
            (ProposalStatus.PENDING_APPROVAL, WorkflowTrigger.REJECT, ProposalStatus.REJECTED),
            (ProposalStatus.APPROVED, WorkflowTrigger.REJECT, ProposalStatus.REJECTED),
            (ProposalStatus.APPROVED, WorkflowTrigger.ACCEPT, ProposalStatus.ACCEPTED),
        ],
    )
    def test_legal_transitions(self, status, trigger, expected):
        assert transition(status, trigger) == expected
        assert can_transition(status, trigger) is True

    def test_accepting_a_draft_is_refused(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            transition(ProposalStatus.DRAFT, WorkflowTrigger.ACCEPT)

        exc = exc_info.value
        assert exc.message == "Cannot accept a proposal in status 'draft'"
        assert exc.stage == "signature"
        assert exc.context == {"current_status": "draft", "trigger": "accept"}

    @pytest.mark.parametrize("status", [ProposalStatus.REJECTED, ProposalStatus.ACCEPTED])
    def test_terminal_statuses_have_no_exit(self, status):
        for trigger in WorkflowTrigger:
            assert can_transition(status, trigger) is False

    def test_accepts_plain_string_status(self):
        assert transition("draft", WorkflowTrigger.SUBMIT) == ProposalStatus.PENDING_APPROVAL

    def test_table_size(self):
        assert len(TRANSITIONS) == 5
