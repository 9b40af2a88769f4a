"""
Email delivery for workflow notifications.

WHAT: A small provider layer that turns a rendered notification into an
outgoing email: Resend in production, an in-memory mock everywhere else.

WHY: The outbox dispatcher needs one call that either delivers a message
or reports why it could not. Workflow state is never touched from here;
a failed send is retried by the dispatcher on its next run.

HOW: Providers return an EmailResult rather than raising. EmailService
picks the provider from settings and logs every attempt.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, List
from urllib.parse import urlparse

import httpx

from proposal_engine.core.config import settings


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailType(str, Enum):
    """Notification category, used as a Resend tag and in logs."""

    APPROVAL = "approval"
    SIGNATURE = "signature"
    PROPOSAL = "proposal"


@dataclass
class EmailMessage:
    """One outgoing notification email."""

    to_email: str
    subject: str
    html_content: str
    text_content: Optional[str] = None
    email_type: EmailType = EmailType.PROPOSAL
    metadata: Optional[Dict[str, str]] = None


@dataclass
class EmailResult:
    """
    Outcome of a send.

    WHY: The dispatcher decides between retry and give-up from this
    instead of from provider-specific exceptions.
    """

    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailProvider(ABC):
    """Delivery backend."""

    name: str = "abstract"

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """Deliver a message; transport failures come back as a failed result."""


class ResendProvider(EmailProvider):
    """
    Sends through the Resend REST API.

    HOW: One POST per message. Non-2xx responses and httpx transport errors
    become failed results. ``transport`` lets tests plug in an
    ``httpx.MockTransport``.
    """

    name = "resend"

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._api_key = api_key or settings.RESEND_API_KEY
        self._sender = sender or settings.NOTIFICATION_FROM_EMAIL or self.default_sender()
        self._transport = transport
        self._timeout = timeout

    @staticmethod
    def default_sender() -> str:
        """noreply address on the frontend's host."""
        host = urlparse(settings.FRONTEND_URL).hostname or "localhost"
        return f"{settings.PROJECT_NAME} <noreply@{host}>"

    def _payload(self, message: EmailMessage) -> dict:
        payload = {
            "from": self._sender,
            "to": [message.to_email],
            "subject": message.subject,
            "html": message.html_content,
            "tags": [{"name": "email_type", "value": message.email_type.value}],
        }
        if message.text_content:
            payload["text"] = message.text_content
        for key, value in (message.metadata or {}).items():
            payload["tags"].append({"name": key, "value": value})
        return payload

    async def send(self, message: EmailMessage) -> EmailResult:
        if not self._api_key:
            return EmailResult(success=False, provider=self.name, error="Resend API key not configured")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=self._payload(message),
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend transport error for {message.to_email}: {e}")
            return EmailResult(success=False, provider=self.name, error=str(e))

        if response.is_success:
            return EmailResult(success=True, provider=self.name, message_id=response.json().get("id"))
        return EmailResult(
            success=False,
            provider=self.name,
            error=f"Resend API error: {response.status_code} - {response.text}",
        )


class MockEmailProvider(EmailProvider):
    """
    Records messages instead of sending them.

    Used in development and tests; ``sent_emails`` is shared across
    instances so tests can inspect what the dispatcher delivered.
    """

    name = "mock"
    sent_emails: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> EmailResult:
        logger.info(f"[MOCK EMAIL] {message.email_type.value} to {message.to_email}: {message.subject}")
        MockEmailProvider.sent_emails.append(message)
        return EmailResult(success=True, provider=self.name, message_id=f"mock-{uuid.uuid4()}")

    @classmethod
    def clear_sent_emails(cls):
        cls.sent_emails = []


class EmailService:
    """
    Sends messages through the configured provider and logs the outcome.

    Resend is used when RESEND_API_KEY is set, otherwise the mock provider.
    """

    def __init__(self, provider: Optional[EmailProvider] = None):
        if provider is not None:
            self._provider = provider
        elif settings.RESEND_API_KEY:
            self._provider = ResendProvider()
        else:
            logger.warning("RESEND_API_KEY not set, notifications go to the mock email provider")
            self._provider = MockEmailProvider()

    @property
    def provider(self) -> EmailProvider:
        return self._provider

    async def send_email(self, message: EmailMessage) -> EmailResult:
        result = await self._provider.send(message)

        if result.success:
            logger.info(
                f"Sent {message.email_type.value} email to {message.to_email}",
                extra={"message_id": result.message_id, "provider": result.provider},
            )
        else:
            logger.error(
                f"Failed to send {message.email_type.value} email to {message.to_email}: {result.error}",
                extra={"provider": result.provider, "error": result.error},
            )
        return result


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Process-wide EmailService, created on first use."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
