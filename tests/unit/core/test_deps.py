"""
Tests for the tenant dependency.
"""

import pytest

from proposal_engine.core.deps import get_org_id
from proposal_engine.core.exceptions import ValidationError


class TestGetOrgId:

    def test_valid_header(self):
        assert get_org_id(" 7 ") == 7

    @pytest.mark.parametrize("value", [None, "", "  ", "abc", "0", "-3"])
    def test_invalid_header(self, value):
        with pytest.raises(ValidationError) as exc_info:
            get_org_id(value)

        assert exc_info.value.context["field"] == "X-Org-ID"
