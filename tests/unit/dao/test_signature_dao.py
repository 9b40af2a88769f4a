"""
Unit tests for SignatureRequestDAO and WorkflowEventDAO.
"""

import pytest
from datetime import timedelta

from proposal_engine.dao.signature import SignatureRequestDAO
from proposal_engine.dao.workflow_event import WorkflowEventDAO
from proposal_engine.models.workflow import WorkflowEventType
from tests.factories import FIXED_NOW, ProposalFactory, SignatureRequestFactory


class TestSignatureRequestDAO:

    @pytest.mark.asyncio
    async def test_mark_signed_once(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        signature = await SignatureRequestFactory.create(db_session, proposal)
        dao = SignatureRequestDAO(db_session)

        kwargs = dict(
            signed_at=FIXED_NOW,
            signature_data={"svg": "<path/>"},
            ip_address="10.0.0.1",
            user_agent="pytest",
            location_data=None,
            is_verified=True,
        )
        assert await dao.mark_signed(signature.id, **kwargs) is True
        assert await dao.mark_signed(signature.id, **kwargs) is False
        assert signature.signed_at == FIXED_NOW
        assert signature.ip_address == "10.0.0.1"
        assert signature.is_verified is True

    @pytest.mark.asyncio
    async def test_declined_request_cannot_be_signed(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        signature = await SignatureRequestFactory.create(db_session, proposal)
        dao = SignatureRequestDAO(db_session)

        assert await dao.mark_declined(signature.id, FIXED_NOW, "Budget cut") is True
        assert await dao.mark_signed(
            signature.id, FIXED_NOW, None, None, None, None, False
        ) is False
        assert signature.decline_reason == "Budget cut"

    @pytest.mark.asyncio
    async def test_count_unsigned(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        first = await SignatureRequestFactory.create(db_session, proposal)
        await SignatureRequestFactory.create(db_session, proposal, signer_email="cfo@acme.example")
        dao = SignatureRequestDAO(db_session)

        assert await dao.count_unsigned(proposal.id) == 2
        await dao.mark_signed(first.id, FIXED_NOW, None, None, None, None, False)
        assert await dao.count_unsigned(proposal.id) == 1

    @pytest.mark.asyncio
    async def test_get_expired_unsigned(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        expired = await SignatureRequestFactory.create(
            db_session, proposal, expires_at=FIXED_NOW - timedelta(days=1)
        )
        await SignatureRequestFactory.create(
            db_session, proposal, expires_at=FIXED_NOW + timedelta(days=1)
        )
        await SignatureRequestFactory.create(
            db_session,
            proposal,
            expires_at=FIXED_NOW - timedelta(days=1),
            signed_at=FIXED_NOW - timedelta(days=2),
        )
        dao = SignatureRequestDAO(db_session)

        found = await dao.get_expired_unsigned(FIXED_NOW)

        assert [s.id for s in found] == [expired.id]
        assert await dao.get_expired_unsigned(FIXED_NOW, org_id=2) == []

    @pytest.mark.asyncio
    async def test_expiry_flagged_once(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        expired = await SignatureRequestFactory.create(
            db_session, proposal, expires_at=FIXED_NOW - timedelta(days=1)
        )
        dao = SignatureRequestDAO(db_session)

        assert await dao.mark_expiry_notified(expired.id, FIXED_NOW) is True
        assert await dao.mark_expiry_notified(expired.id, FIXED_NOW) is False
        assert await dao.get_expired_unsigned(FIXED_NOW) == []

    def test_is_expired(self):
        from proposal_engine.models.workflow import SignatureRequest

        signature = SignatureRequest(expires_at=FIXED_NOW, signed_at=None)

        assert signature.is_expired(FIXED_NOW) is False
        assert signature.is_expired(FIXED_NOW + timedelta(seconds=1)) is True


class TestWorkflowEventDAO:

    @pytest.mark.asyncio
    async def test_pending_respects_attempts_and_dispatch(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        dao = WorkflowEventDAO(db_session)
        sent = await dao.emit(1, proposal.id, WorkflowEventType.PROPOSAL_APPROVED, "owner@msp.example")
        exhausted = await dao.emit(1, proposal.id, WorkflowEventType.PROPOSAL_APPROVED, "owner@msp.example")
        waiting = await dao.emit(1, proposal.id, WorkflowEventType.PROPOSAL_APPROVED, "owner@msp.example")

        await dao.mark_dispatched(sent.id, FIXED_NOW, 1)
        await dao.mark_failed(exhausted.id, 3, "SMTP down")

        pending = await dao.get_pending(max_attempts=3)

        assert [e.id for e in pending] == [waiting.id]

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_error(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        dao = WorkflowEventDAO(db_session)
        event = await dao.emit(1, proposal.id, WorkflowEventType.PROPOSAL_APPROVED, None)

        await dao.mark_failed(event.id, 1, "x" * 5000)
        await db_session.refresh(event)

        assert event.attempts == 1
        assert len(event.last_error) == 2000

    @pytest.mark.asyncio
    async def test_get_for_proposal_scoped(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        dao = WorkflowEventDAO(db_session)
        await dao.emit(1, proposal.id, WorkflowEventType.PROPOSAL_APPROVED, None, {"a": 1})

        events = await dao.get_for_proposal(proposal.id, 1)

        assert len(events) == 1
        assert events[0].payload == {"a": 1}
        assert await dao.get_for_proposal(proposal.id, 2) == []
