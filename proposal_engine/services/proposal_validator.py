"""
Proposal and template validation.

WHAT: Combines field-presence rules, ContentValidator and
PricingCalculator into one pass/fail/warn verdict.

WHY: A proposal may not be saved, submitted for approval or become
financially final while it has errors. Form clients need every problem at
once, each tagged with the field to highlight, so rules never
short-circuit.

HOW: Rules run in a fixed order and accumulate:
1. title, client_id, content, items presence
2. currency is supported
3. content lint flags become warnings
4. pricing errors become ``pricing`` field errors
5. valid_until must be in the future (warning when very far out)
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from proposal_engine.core.clock import Clock, utcnow, as_naive_utc
from proposal_engine.core.config import settings
from proposal_engine.schemas.proposal import FieldError, ValidationResult
from proposal_engine.services.content_validator import ContentValidator
from proposal_engine.services.pricing import PricingCalculator, ZERO, to_decimal


logger = logging.getLogger(__name__)

CONTENT_WARNINGS = {
    "spell_check": "Potential spelling errors detected",
    "grammar_check": "Grammar and formatting issues detected",
    "professional_tone": "Content may not maintain professional tone",
    "completeness": "Proposal content appears incomplete",
}

RECOMMENDED_TEMPLATE_SECTIONS = ("overview", "pricing")


def _get(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, dict):
        return source.get(name, default)
    return getattr(source, name, default)


class ProposalValidator:
    """
    Validates proposal drafts and templates.

    WHAT: ``validate(draft, items)`` and ``validate_template(template)``
    return a ValidationResult; ``is_valid`` is true iff there are no
    errors. Warnings never affect ``is_valid``.

    Example:
        result = ProposalValidator().validate(draft, draft.items)
        if not result.is_valid:
            return result.errors  # [{"field": "title", ...}]
    """

    def __init__(
        self,
        pricing: Optional[PricingCalculator] = None,
        content_validator: Optional[ContentValidator] = None,
        clock: Clock = utcnow,
        supported_currencies: Optional[Sequence[str]] = None,
        validity_warning_days: Optional[int] = None,
    ):
        self.pricing = pricing or PricingCalculator()
        self.content_validator = content_validator or ContentValidator()
        self.clock = clock
        self.supported_currencies = {
            code.upper() for code in (supported_currencies or settings.SUPPORTED_CURRENCIES)
        }
        self.validity_warning_days = (
            settings.VALIDITY_WARNING_DAYS if validity_warning_days is None else validity_warning_days
        )

    def validate(self, draft: Any, items: Optional[Sequence[Any]] = None) -> ValidationResult:
        """
        Validate a partial proposal and its items.

        Args:
            draft: ProposalDraft, Proposal row or dict
            items: Line items; defaults to ``draft.items`` when omitted

        Returns:
            ValidationResult
        """
        if items is None:
            items = _get(draft, "items") or []
        items = list(items)

        errors: List[FieldError] = []
        warnings: List[str] = []

        title = _get(draft, "title")
        if not (isinstance(title, str) and title.strip()):
            errors.append(FieldError(field="title", message="Proposal title is required"))

        if _get(draft, "client_id") is None:
            errors.append(FieldError(field="client_id", message="Client selection is required"))

        content = _get(draft, "content")
        if not (isinstance(content, dict) and content):
            errors.append(FieldError(field="content", message="Proposal content is required"))

        if not items:
            errors.append(FieldError(field="items", message="At least one proposal item is required"))

        currency = _get(draft, "currency")
        if currency is not None and str(currency).upper() not in self.supported_currencies:
            errors.append(
                FieldError(
                    field="currency",
                    message=(
                        f"Unsupported currency: {currency} "
                        f"(supported: {', '.join(sorted(self.supported_currencies))})"
                    ),
                )
            )

        if isinstance(content, dict) and content:
            flags = self.content_validator.validate(content)
            for flag, message in CONTENT_WARNINGS.items():
                if not getattr(flags, flag):
                    warnings.append(message)

        # Empty item lists are already reported above
        if items:
            pricing = self.pricing.calculate(
                items,
                tax_rate_percent=_get(draft, "tax_rate_percent"),
                global_discount_percent=_get(draft, "global_discount_percent") or 0,
            )
            for message in pricing.errors:
                errors.append(FieldError(field="pricing", message=message))
            if pricing.final_amount <= ZERO:
                errors.append(
                    FieldError(field="pricing", message="Total proposal amount must be greater than zero")
                )

        valid_until = as_naive_utc(_get(draft, "valid_until"))
        if valid_until is not None:
            now = self.clock()
            if valid_until <= now:
                errors.append(
                    FieldError(field="valid_until", message="Proposal validity date must be in the future")
                )
            elif valid_until - now > timedelta(days=self.validity_warning_days):
                warnings.append("Proposal validity period exceeds 1 year")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_template(self, template: Any) -> ValidationResult:
        """
        Validate a proposal template.

        WHAT: Name and content with at least one section are required;
        missing recommended sections and incomplete pricing structure are
        warnings; contradictory amount rules are errors.
        """
        errors: List[FieldError] = []
        warnings: List[str] = []

        name = _get(template, "name")
        if not (isinstance(name, str) and name.strip()):
            errors.append(FieldError(field="name", message="Template name is required"))

        content: Optional[Dict[str, Any]] = _get(template, "template_content")
        if not content:
            errors.append(FieldError(field="template_content", message="Template content is required"))

        if content:
            sections = content.get("sections")
            if not isinstance(sections, list) or not sections:
                errors.append(
                    FieldError(field="template_content", message="Template must have at least one section")
                )
                sections = []

            section_ids = {section.get("id") for section in sections if isinstance(section, dict)}
            for section in RECOMMENDED_TEMPLATE_SECTIONS:
                if section not in section_ids:
                    warnings.append(f"Missing recommended section: {section}")

        pricing_structure = _get(template, "pricing_structure")
        if pricing_structure:
            if not pricing_structure.get("currency"):
                warnings.append("Currency not specified in pricing structure")
            if pricing_structure.get("tax_rate") is None:
                warnings.append("Tax rate not specified in pricing structure")

        rules = _get(template, "validation_rules")
        if rules:
            min_amount = rules.get("min_amount")
            max_amount = rules.get("max_amount")
            if min_amount and max_amount and to_decimal(min_amount) >= to_decimal(max_amount):
                errors.append(
                    FieldError(
                        field="validation_rules",
                        message="Minimum amount must be less than maximum amount",
                    )
                )

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
