"""
Template Service for rendering notification emails and proposal previews.

WHAT: Loads and renders Jinja2 templates for workflow notifications and
the HTML proposal preview.

WHY: Template-based output provides:
- Consistent branding across all notifications
- Auto-escaping of user-supplied proposal content (titles, scope,
  terms) which ends up in HTML
- Separation of content from dispatch logic

HOW: Uses a Jinja2 environment with FileSystemLoader over the package's
``templates`` directory. Subjects and plain-text versions are built in
Python; HTML comes from one template per event type.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape

from proposal_engine.core.config import settings
from proposal_engine.core.exceptions import EmailServiceError
from proposal_engine.models.workflow import WorkflowEventType
from proposal_engine.services.pricing import to_decimal


logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}

NOTIFICATION_SUBJECTS: Dict[WorkflowEventType, str] = {
    WorkflowEventType.APPROVAL_REQUESTED: "Approval Required: {title}",
    WorkflowEventType.APPROVAL_ESCALATED: "Approval Overdue: {title}",
    WorkflowEventType.PROPOSAL_APPROVED: "Proposal Approved: {title}",
    WorkflowEventType.PROPOSAL_REJECTED: "Proposal Rejected: {title}",
    WorkflowEventType.SIGNATURE_REQUESTED: "Signature Required: {title}",
    WorkflowEventType.SIGNATURE_RECORDED: "Signature Recorded: {title}",
    WorkflowEventType.SIGNATURE_EXPIRED: "Signature Request Expired: {title}",
    WorkflowEventType.PROPOSAL_ACCEPTED: "Proposal Accepted: {title}",
}


def format_money(value: Any, currency: str = "USD") -> str:
    """Format an amount with its currency symbol, e.g. ``$1,234.50``."""
    amount = to_decimal(value)
    symbol = CURRENCY_SYMBOLS.get((currency or "").upper())
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f} {currency}"


def _format_quantity(value: Any) -> str:
    quantity = to_decimal(value)
    return f"{quantity.normalize():f}" if quantity == quantity.to_integral_value() else f"{quantity:f}"


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    return str(value) if value else ""


class TemplateService:
    """
    Service for rendering templates.

    Example:
        subject, html, text = TemplateService().render_notification(
            WorkflowEventType.APPROVAL_REQUESTED,
            {"title": "Managed IT", "level": 1},
        )
    """

    def __init__(self, template_dir: Optional[Path] = None):
        """
        Initialize template service.

        Args:
            template_dir: Path to templates directory (defaults to the package templates)
        """
        self._template_dir = template_dir or TEMPLATE_DIR
        self._env = self._create_environment()

    def _create_environment(self) -> Environment:
        """
        Create Jinja2 environment.

        WHY: Auto-escaping for XSS prevention; proposal content is user input.
        """
        env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        env.filters["money"] = format_money
        env.filters["qty"] = _format_quantity
        env.filters["datefmt"] = _format_date
        return env

    def _get_base_context(self) -> Dict[str, Any]:
        return {
            "year": datetime.utcnow().year,
            "frontend_url": settings.FRONTEND_URL,
            "platform_name": settings.PROJECT_NAME,
        }

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render a template with given context.

        Raises:
            EmailServiceError: If template not found or render fails
        """
        try:
            template = self._env.get_template(template_name)
            full_context = {**self._get_base_context(), **context}
            return template.render(**full_context)
        except TemplateNotFound:
            logger.error(f"Template not found: {template_name}")
            raise EmailServiceError(
                message=f"Template not found: {template_name}",
                template=template_name,
            )
        except TemplateError as e:
            logger.error(f"Error rendering template {template_name}: {e}")
            raise EmailServiceError(
                message="Failed to render template",
                template=template_name,
                error=str(e),
            )

    def render_notification(
        self,
        event_type: WorkflowEventType,
        payload: Dict[str, Any],
    ) -> Tuple[str, str, str]:
        """
        Render a workflow notification.

        Args:
            event_type: Outbox event type
            payload: Event payload (proposal summary plus event details)

        Returns:
            Tuple of (subject, html_content, text_content)
        """
        event_type = WorkflowEventType(event_type)
        context = dict(payload)
        context.setdefault("title", "Proposal")
        context["final_amount"] = format_money(context.get("final_amount"), context.get("currency") or "USD")
        context.setdefault("currency", "")

        subject = NOTIFICATION_SUBJECTS[event_type].format(title=context["title"])
        html = self.render_template(f"notifications/{event_type.value}.html", context)
        text = self._generate_text_version(self._text_body(event_type, context))
        return subject, html, text

    @staticmethod
    def _text_body(event_type: WorkflowEventType, context: Dict[str, Any]) -> str:
        summary = (
            f"Proposal: {context['title']}\n"
            + (f"Client: {context['client_name']}\n" if context.get("client_name") else "")
            + f"Amount: {context['final_amount']}\n"
        )

        if event_type == WorkflowEventType.APPROVAL_REQUESTED:
            lead = (
                f"A proposal requires your approval at level {context.get('level')}.\n"
                "Please review and approve or reject this proposal."
            )
        elif event_type == WorkflowEventType.APPROVAL_ESCALATED:
            lead = f"The approval at level {context.get('level')} is overdue."
        elif event_type == WorkflowEventType.PROPOSAL_APPROVED:
            lead = "All approvals are complete. The proposal is ready for signatures."
        elif event_type == WorkflowEventType.PROPOSAL_REJECTED:
            lead = "The proposal has been rejected." + (
                f"\nReason: {context['reason']}" if context.get("reason") else ""
            )
        elif event_type == WorkflowEventType.SIGNATURE_REQUESTED:
            lead = (
                f"{context.get('custom_message') or 'A proposal requires your signature.'}\n"
                f"Verification Code: {context.get('verification_code')}\n"
                f"This request expires on {context.get('expires_at')}."
            )
        elif event_type == WorkflowEventType.SIGNATURE_RECORDED:
            lead = f"{context.get('signer_name')} has signed the proposal."
        elif event_type == WorkflowEventType.SIGNATURE_EXPIRED:
            lead = f"The signature request for {context.get('signer_name')} has expired."
        else:
            lead = "All signatures are complete. The proposal is now accepted."

        return f"{lead}\n\n{summary}"

    def render_proposal_preview(
        self,
        proposal: Any,
        items: Sequence[Any],
    ) -> str:
        """
        Render the HTML preview of a stored proposal.

        Args:
            proposal: Proposal row
            items: Its items in display order

        Returns:
            Complete HTML document
        """
        return self.render_template(
            "proposal_preview.html",
            {
                "proposal": proposal,
                "items": items,
                "content": proposal.content or {},
                "currency": proposal.currency,
            },
        )

    @staticmethod
    def _generate_text_version(content: str) -> str:
        """Generate plain text version with the standard footer."""
        footer = (
            "\n\n---\n"
            f"{settings.PROJECT_NAME}\n"
            "If you didn't expect this email, please ignore it."
        )
        return content.strip() + footer


# Module-level singleton
_template_service: Optional[TemplateService] = None


def get_template_service() -> TemplateService:
    """Get or create the global template service instance."""
    global _template_service

    if _template_service is None:
        _template_service = TemplateService()

    return _template_service
