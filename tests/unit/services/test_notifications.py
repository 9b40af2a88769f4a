"""
Unit tests for NotificationDispatcher.

WHAT: Delivery of outbox events, failure bookkeeping and retries.

WHY: Notifications are best-effort. A failing provider must never lose an
event silently, and must never be retried forever.

HOW: A mocked NotificationSender records calls or raises
EmailServiceError; event rows are refreshed after each run because the
DAO updates them without touching loaded instances.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from proposal_engine.core.exceptions import EmailServiceError
from proposal_engine.dao.workflow_event import WorkflowEventDAO
from proposal_engine.models.workflow import WorkflowEventType
from proposal_engine.services.email import (
    EmailResult,
    EmailService,
    EmailType,
    MockEmailProvider,
)
from proposal_engine.services.notifications import (
    EmailNotificationSender,
    NotificationDispatcher,
    NotificationSender,
)
from tests.factories import FIXED_NOW, ProposalFactory, chain_config


PAYLOAD = {
    "title": "Managed IT Services",
    "client_name": "Acme Corp",
    "final_amount": "220.00",
    "currency": "USD",
    "level": 1,
}


async def _emit(session, proposal, recipient="approver@msp.example", event_type=WorkflowEventType.APPROVAL_REQUESTED):
    event = await WorkflowEventDAO(session).emit(
        org_id=proposal.org_id,
        proposal_id=proposal.id,
        event_type=event_type,
        recipient_email=recipient,
        payload=PAYLOAD,
    )
    await session.commit()
    return event


@pytest.fixture
def sender():
    """Create a mocked sender that succeeds."""
    mock = MagicMock(spec=NotificationSender)
    mock.send = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def dispatcher_factory(db_session, sender):
    def build(**overrides) -> NotificationDispatcher:
        overrides.setdefault("sender", sender)
        overrides.setdefault("clock", lambda: FIXED_NOW)
        return NotificationDispatcher(db_session, **overrides)

    return build


class TestDispatchPending:

    @pytest.mark.asyncio
    async def test_sends_and_marks_dispatched(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        event = await _emit(db_session, proposal)

        summary = await dispatcher_factory().dispatch_pending()

        assert (summary.sent, summary.failed, summary.skipped) == (1, 0, 0)
        sender.send.assert_awaited_once()
        args, kwargs = sender.send.call_args
        assert args[0] == "approver@msp.example"
        assert args[1] == "Approval Required: Managed IT Services"
        assert "$220.00" in args[2]
        assert kwargs["event_type"] == WorkflowEventType.APPROVAL_REQUESTED

        await db_session.refresh(event)
        assert event.dispatched_at == FIXED_NOW
        assert event.attempts == 1
        assert event.last_error is None

    @pytest.mark.asyncio
    async def test_dispatched_events_not_sent_again(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        await _emit(db_session, proposal)
        dispatcher = dispatcher_factory()

        await dispatcher.dispatch_pending()
        second = await dispatcher.dispatch_pending()

        assert second.sent == 0
        assert sender.send.await_count == 1

    @pytest.mark.asyncio
    async def test_event_without_recipient_skipped(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        event = await _emit(db_session, proposal, recipient=None)

        summary = await dispatcher_factory().dispatch_pending()

        assert summary.skipped == 1
        sender.send.assert_not_awaited()
        await db_session.refresh(event)
        assert event.dispatched_at == FIXED_NOW
        assert event.attempts == 0

    @pytest.mark.asyncio
    async def test_failure_recorded_and_retried(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        event = await _emit(db_session, proposal)
        sender.send.side_effect = [EmailServiceError(message="Send failed", error="mailbox unavailable"), None]
        dispatcher = dispatcher_factory()

        first = await dispatcher.dispatch_pending()
        await db_session.refresh(event)
        assert first.failed == 1
        assert event.dispatched_at is None
        assert event.attempts == 1
        assert event.last_error == "mailbox unavailable"

        second = await dispatcher.dispatch_pending()
        await db_session.refresh(event)
        assert second.sent == 1
        assert event.attempts == 2
        assert event.last_error is None

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        event = await _emit(db_session, proposal)
        sender.send.side_effect = EmailServiceError(message="Send failed")
        dispatcher = dispatcher_factory(max_attempts=2)

        await dispatcher.dispatch_pending()
        await dispatcher.dispatch_pending()
        third = await dispatcher.dispatch_pending()

        assert (third.sent, third.failed, third.skipped) == (0, 0, 0)
        assert sender.send.await_count == 2
        await db_session.refresh(event)
        assert event.attempts == 2
        assert event.last_error == "Send failed"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        await _emit(db_session, proposal, recipient="a@msp.example")
        await _emit(db_session, proposal, recipient="b@msp.example")
        sender.send.side_effect = [EmailServiceError(message="Send failed"), None]

        summary = await dispatcher_factory().dispatch_pending()

        assert (summary.sent, summary.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_batch_size(self, db_session, dispatcher_factory, sender):
        proposal = await ProposalFactory.create(db_session)
        for n in range(3):
            await _emit(db_session, proposal, recipient=f"r{n}@msp.example")

        summary = await dispatcher_factory(batch_size=2).dispatch_pending()

        assert summary.sent == 2


class TestEmailNotificationSender:

    @pytest.mark.asyncio
    async def test_signature_request_delivered_through_mock_provider(self, db_session):
        proposal = await ProposalFactory.create(db_session)
        await WorkflowEventDAO(db_session).emit(
            org_id=1,
            proposal_id=proposal.id,
            event_type=WorkflowEventType.SIGNATURE_REQUESTED,
            recipient_email="signer@acme.example",
            payload={**PAYLOAD, "signer_name": "Sam Signer", "verification_code": "ABCD1234EF"},
        )
        await db_session.commit()
        sender = EmailNotificationSender(EmailService(MockEmailProvider()))

        summary = await NotificationDispatcher(db_session, sender=sender).dispatch_pending()

        assert summary.sent == 1
        (message,) = MockEmailProvider.sent_emails
        assert message.to_email == "signer@acme.example"
        assert message.subject == "Signature Required: Managed IT Services"
        assert message.email_type == EmailType.SIGNATURE
        assert "ABCD1234EF" in message.html_content
        assert "Verification Code: ABCD1234EF" in message.text_content
        assert message.metadata == {"event_type": "signature_requested"}

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self):
        provider = MagicMock()
        provider.send = AsyncMock(
            return_value=EmailResult(success=False, error="Resend API error: 500", provider="resend")
        )
        sender = EmailNotificationSender(EmailService(provider))

        with pytest.raises(EmailServiceError) as exc_info:
            await sender.send("owner@msp.example", "Subject", "<p>Body</p>")

        assert exc_info.value.context["error"] == "Resend API error: 500"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_engine_events_reach_approvers(self, db_session, workflow_engine):
        proposal = await ProposalFactory.create(db_session)
        await workflow_engine.start_approval_chain(proposal.id, 1, chain_config(approvers_per_level=2))
        await db_session.commit()
        sender = EmailNotificationSender(EmailService(MockEmailProvider()))

        summary = await NotificationDispatcher(db_session, sender=sender).dispatch_pending()

        assert summary.sent == 2
        assert sorted(m.to_email for m in MockEmailProvider.sent_emails) == [
            "approver1_1@msp.example",
            "approver1_2@msp.example",
        ]
        assert all(m.email_type == EmailType.APPROVAL for m in MockEmailProvider.sent_emails)
