"""
Unit tests for the email providers.

WHAT: Resend request shape and failure handling, and provider selection.

HOW: Resend calls go through httpx.MockTransport, so no network is used.
"""

import json

import httpx
import pytest

from proposal_engine.services.email import (
    RESEND_API_URL,
    EmailMessage,
    EmailService,
    EmailType,
    MockEmailProvider,
    ResendProvider,
)


MESSAGE = EmailMessage(
    to_email="approver@msp.example",
    subject="Approval Required: Managed IT Services",
    html_content="<p>Please review</p>",
    text_content="Please review",
    email_type=EmailType.APPROVAL,
    metadata={"event_type": "approval_requested"},
)


class TestResendProvider:

    @pytest.mark.asyncio
    async def test_sends_request(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "re_123"})

        provider = ResendProvider(
            api_key="re_test", sender="Proposals <noreply@msp.example>", transport=httpx.MockTransport(handler)
        )

        result = await provider.send(MESSAGE)

        assert result.success is True
        assert result.message_id == "re_123"
        assert result.provider == "resend"
        (request,) = requests
        assert str(request.url) == RESEND_API_URL
        assert request.headers["Authorization"] == "Bearer re_test"
        body = json.loads(request.content)
        assert body["from"] == "Proposals <noreply@msp.example>"
        assert body["to"] == ["approver@msp.example"]
        assert body["text"] == "Please review"
        assert body["tags"] == [
            {"name": "email_type", "value": "approval"},
            {"name": "event_type", "value": "approval_requested"},
        ]

    @pytest.mark.asyncio
    async def test_api_error_is_failed_result(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(422, text="invalid from"))
        provider = ResendProvider(api_key="re_test", sender="x@msp.example", transport=transport)

        result = await provider.send(MESSAGE)

        assert result.success is False
        assert result.error == "Resend API error: 422 - invalid from"

    @pytest.mark.asyncio
    async def test_transport_error_is_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = ResendProvider(api_key="re_test", sender="x@msp.example", transport=httpx.MockTransport(handler))

        result = await provider.send(MESSAGE)

        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr("proposal_engine.services.email.settings.RESEND_API_KEY", None)

        result = await ResendProvider(sender="x@msp.example").send(MESSAGE)

        assert result.success is False
        assert result.error == "Resend API key not configured"


class TestEmailService:

    def test_mock_provider_without_api_key(self, monkeypatch):
        monkeypatch.setattr("proposal_engine.services.email.settings.RESEND_API_KEY", None)

        assert isinstance(EmailService().provider, MockEmailProvider)

    def test_resend_provider_with_api_key(self, monkeypatch):
        monkeypatch.setattr("proposal_engine.services.email.settings.RESEND_API_KEY", "re_live")

        assert isinstance(EmailService().provider, ResendProvider)

    @pytest.mark.asyncio
    async def test_mock_records_messages(self):
        result = await EmailService(MockEmailProvider()).send_email(MESSAGE)

        assert result.success is True
        assert result.message_id.startswith("mock-")
        assert MockEmailProvider.sent_emails == [MESSAGE]
