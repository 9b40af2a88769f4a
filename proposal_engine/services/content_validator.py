"""
Proposal content lint.

WHAT: Cheap heuristics over proposal/template content: a misspelling
denylist, a formatting check, an informal-tone denylist and a structural
completeness check.

WHY: Gives authors early hints before a proposal goes to approvers. These
are best-effort warnings only. They are not a spell checker, not a
grammar checker and never block persistence.

HOW: Content is serialized to compact JSON and scanned with
case-insensitive substring matches; completeness looks at the structure.
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

from proposal_engine.schemas.proposal import ContentValidation


logger = logging.getLogger(__name__)

COMMON_MISSPELLINGS = ("teh", "recieve", "seperate", "definately", "occured")
INFORMAL_TOKENS = ("lol", "omg")

_UPPERCASE = re.compile(r"[A-Z]")


def serialize_content(content: Any) -> str:
    """Compact JSON text of the content (non-ASCII kept as-is)."""
    return json.dumps(content, ensure_ascii=False, separators=(",", ":"), default=str)


def _is_filled(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    # Only text or a list of entries describes a scope
    return False


class ContentValidator:
    """
    Heuristic content checks returning four independent flags.

    Example:
        flags = ContentValidator().validate({"overview": "Hi", "scope": "x"})
        flags.completeness  # False: no pricing section
    """

    def __init__(
        self,
        misspellings: Optional[Sequence[str]] = None,
        informal_tokens: Optional[Sequence[str]] = None,
    ):
        self.misspellings = tuple(w.lower() for w in (misspellings or COMMON_MISSPELLINGS))
        self.informal_tokens = tuple(w.lower() for w in (informal_tokens or INFORMAL_TOKENS))

    def validate(self, content: Optional[Dict[str, Any]]) -> ContentValidation:
        content = content or {}
        try:
            text = serialize_content(content)
        except (TypeError, ValueError):
            # Unserializable content cannot be linted; report every flag
            logger.warning("Content could not be serialized for linting", exc_info=True)
            return ContentValidation(
                spell_check=False,
                grammar_check=False,
                professional_tone=False,
                completeness=False,
            )

        lowered = text.lower()

        return ContentValidation(
            spell_check=not any(word in lowered for word in self.misspellings),
            grammar_check=self._check_grammar(text),
            professional_tone=not any(token in lowered for token in self.informal_tokens),
            completeness=self._check_completeness(content),
        )

    @staticmethod
    def _check_grammar(text: str) -> bool:
        has_capitalization = _UPPERCASE.search(text) is not None
        has_complete_sentences = ".  " not in text and "..." not in text
        return has_capitalization and has_complete_sentences

    @staticmethod
    def _check_completeness(content: Dict[str, Any]) -> bool:
        """
        Overview, scope and pricing must all be present.

        Scope may be a string or a list; pricing is either a ``pricing``
        key or a section of type ``pricing_table``.
        """
        overview = content.get("overview")
        has_overview = isinstance(overview, str) and bool(overview.strip())
        has_scope = _is_filled(content.get("scope"))

        sections = content.get("sections")
        has_pricing_table = isinstance(sections, list) and any(
            isinstance(section, dict) and section.get("type") == "pricing_table"
            for section in sections
        )
        has_pricing = bool(content.get("pricing")) or has_pricing_table

        return has_overview and has_scope and has_pricing
