"""
Notification dispatch for workflow outbox events.

WHAT: Turns undelivered WorkflowEvent rows into emails and records the
delivery outcome on each row.

WHY: The workflow engine only records events. Sending happens here, after
the state change has committed, so:
1. A failing mail provider never blocks or rolls back a workflow step
2. Delivery is retried a bounded number of times
3. Tests can swap the sender without touching the engine

HOW:
- NotificationSender is the delivery interface (email today)
- NotificationDispatcher reads pending events in id order, renders each
  with TemplateService and hands it to the sender
- Failures are logged and counted on the row; dispatch never raises
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.core.clock import Clock, utcnow
from proposal_engine.core.config import settings
from proposal_engine.core.exceptions import AppException, EmailServiceError
from proposal_engine.dao.workflow_event import WorkflowEventDAO
from proposal_engine.models.workflow import WorkflowEvent, WorkflowEventType
from proposal_engine.services.email import EmailMessage, EmailService, EmailType, get_email_service
from proposal_engine.services.template_service import TemplateService, get_template_service


logger = logging.getLogger(__name__)

EVENT_EMAIL_TYPES = {
    WorkflowEventType.APPROVAL_REQUESTED: EmailType.APPROVAL,
    WorkflowEventType.APPROVAL_ESCALATED: EmailType.APPROVAL,
    WorkflowEventType.SIGNATURE_REQUESTED: EmailType.SIGNATURE,
    WorkflowEventType.SIGNATURE_EXPIRED: EmailType.SIGNATURE,
}


class NotificationSender(ABC):
    """
    Delivery channel for rendered notifications.

    WHY: The dispatcher does not care whether a notification goes out by
    email or anything else; it only needs success or an exception.
    """

    @abstractmethod
    async def send(
        self,
        recipient_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        event_type: Optional[WorkflowEventType] = None,
    ) -> None:
        """
        Deliver one notification.

        Raises:
            AppException: If delivery failed and should be retried
        """


class EmailNotificationSender(NotificationSender):
    """Sends notifications through the EmailService."""

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service or get_email_service()

    async def send(
        self,
        recipient_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        event_type: Optional[WorkflowEventType] = None,
    ) -> None:
        message = EmailMessage(
            to_email=recipient_email,
            subject=subject,
            html_content=html_body,
            text_content=text_body,
            email_type=EVENT_EMAIL_TYPES.get(event_type, EmailType.PROPOSAL),
            metadata={"event_type": event_type.value} if event_type else None,
        )
        result = await self.email_service.send_email(message)
        if not result.success:
            raise EmailServiceError(
                message=f"Failed to send notification to {recipient_email}",
                provider=result.provider,
                error=result.error,
            )


@dataclass
class DispatchSummary:
    """Outcome counts of one dispatch run."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0


class NotificationDispatcher:
    """
    Delivers pending outbox events.

    Example:
        async with AsyncSessionLocal() as session:
            summary = await NotificationDispatcher(session).dispatch_pending()
            await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        sender: Optional[NotificationSender] = None,
        templates: Optional[TemplateService] = None,
        max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.events = WorkflowEventDAO(session)
        self.sender = sender or EmailNotificationSender()
        self.templates = templates or get_template_service()
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.batch_size = batch_size or settings.NOTIFICATION_DISPATCH_BATCH
        self.clock = clock

    async def dispatch_pending(self) -> DispatchSummary:
        """
        Deliver one batch of undelivered events.

        WHAT: Events without a recipient are closed without sending. A
        failed event keeps ``dispatched_at`` empty and is retried on the
        next run until ``max_attempts`` is reached.

        Returns:
            DispatchSummary with sent, failed and skipped counts
        """
        summary = DispatchSummary()
        pending = await self.events.get_pending(self.max_attempts, limit=self.batch_size)

        for event in pending:
            attempts = event.attempts + 1

            if not event.recipient_email:
                await self.events.mark_dispatched(event.id, self.clock(), event.attempts)
                summary.skipped += 1
                continue

            try:
                await self._deliver(event)
            except AppException as e:
                logger.error(
                    f"Notification {event.id} ({event.event_type}) failed: {e.message}",
                    exc_info=True,
                    extra={
                        "event_id": event.id,
                        "proposal_id": event.proposal_id,
                        "attempts": attempts,
                    },
                )
                await self.events.mark_failed(event.id, attempts, str(e.context.get("error") or e.message))
                summary.failed += 1
                continue

            await self.events.mark_dispatched(event.id, self.clock(), attempts)
            summary.sent += 1

        if pending:
            logger.info(
                f"Dispatched {summary.sent} notifications, {summary.failed} failed, {summary.skipped} skipped",
                extra={"sent": summary.sent, "failed": summary.failed, "skipped": summary.skipped},
            )
        return summary

    async def _deliver(self, event: WorkflowEvent) -> None:
        event_type = WorkflowEventType(event.event_type)
        subject, html, text = self.templates.render_notification(event_type, event.payload or {})
        await self.sender.send(
            event.recipient_email,
            subject,
            html,
            text_body=text,
            event_type=event_type,
        )
