"""
Unit tests for the content lint heuristics.
"""

import pytest

from proposal_engine.services.content_validator import ContentValidator, serialize_content


COMPLETE = {
    "overview": "Managed services for Acme.",
    "scope": ["Helpdesk"],
    "pricing": {"model": "monthly"},
}


class TestContentValidator:

    def test_clean_complete_content(self):
        flags = ContentValidator().validate(COMPLETE)

        assert flags.spell_check is True
        assert flags.grammar_check is True
        assert flags.professional_tone is True
        assert flags.completeness is True

    def test_misspelling_detected_case_insensitive(self):
        flags = ContentValidator().validate({**COMPLETE, "overview": "We will Recieve the hardware."})

        assert flags.spell_check is False

    def test_informal_tone(self):
        flags = ContentValidator().validate({**COMPLETE, "notes": "LOL great deal"})

        assert flags.professional_tone is False

    def test_grammar_needs_capitals(self):
        flags = ContentValidator().validate({"overview": "all lowercase text."})

        assert flags.grammar_check is False

    def test_grammar_flags_ellipsis(self):
        flags = ContentValidator().validate({**COMPLETE, "overview": "And more..."})

        assert flags.grammar_check is False

    def test_scope_as_string(self):
        flags = ContentValidator().validate({**COMPLETE, "scope": "Helpdesk and backups"})

        assert flags.completeness is True

    def test_pricing_table_section_counts_as_pricing(self):
        content = {
            "overview": "Overview.",
            "scope": "Everything.",
            "sections": [{"id": "costs", "type": "pricing_table"}],
        }

        assert ContentValidator().validate(content).completeness is True

    @pytest.mark.parametrize("scope", [5, True, {"items": ["Helpdesk"]}])
    def test_non_text_scope_incomplete(self, scope):
        flags = ContentValidator().validate({**COMPLETE, "scope": scope})

        assert flags.completeness is False

    def test_missing_scope_incomplete(self):
        flags = ContentValidator().validate({"overview": "Overview.", "pricing": {"model": "fixed"}})

        assert flags.completeness is False

    def test_blank_overview_incomplete(self):
        flags = ContentValidator().validate({**COMPLETE, "overview": "   "})

        assert flags.completeness is False

    def test_empty_content(self):
        flags = ContentValidator().validate(None)

        assert flags.completeness is False
        assert flags.spell_check is True

    def test_custom_denylist(self):
        validator = ContentValidator(misspellings=["acme"])

        assert validator.validate(COMPLETE).spell_check is False


def test_serialize_content_keeps_unicode():
    assert serialize_content({"a": "Zürich"}) == '{"a":"Zürich"}'
