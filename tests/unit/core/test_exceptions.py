"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize correctly without leaking sensitive data
2. HTTP status codes and workflow error kinds map correctly
3. Exception handlers render the shared JSON error shape
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from proposal_engine.core.exceptions import (
    AppException,
    BusinessRuleViolation,
    ConfigurationError,
    EmailServiceError,
    InvalidStateTransitionError,
    PolicyViolation,
    ResourceNotFoundError,
    TransientError,
    ValidationError,
)
from proposal_engine.core.exception_handlers import app_exception_handler


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        """Verify default message is used when none provided."""
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_status_code(self):
        """Verify custom status code overrides class default."""
        exc = AppException(status_code=418)
        assert exc.status_code == 418

    def test_context_data(self):
        exc = AppException(proposal_id=12, org_id=3)
        assert exc.context == {"proposal_id": 12, "org_id": 3}

    def test_to_dict_filters_sensitive_data(self):
        """Verification codes and secrets never reach a response body."""
        exc = AppException(
            message="Test error",
            signature_id=5,
            verification_code="ABCD1234",
            token="abc123",
            secret="mysecret",
        )
        result = exc.to_dict()

        assert result["details"] == {"signature_id": 5}

    def test_to_dict_without_context(self):
        result = AppException(message="Plain").to_dict()

        assert result["error"] == "AppException"
        assert result["message"] == "Plain"
        assert result["details"] is None


class TestErrorKinds:
    """Each exception carries the kind the workflow engine reports."""

    @pytest.mark.parametrize(
        "exc_class,status_code,kind",
        [
            (ValidationError, 400, "validation"),
            (ConfigurationError, 422, "configuration"),
            (ResourceNotFoundError, 404, "not_found"),
            (BusinessRuleViolation, 422, "policy"),
            (PolicyViolation, 422, "policy"),
            (InvalidStateTransitionError, 409, "policy"),
            (TransientError, 503, "transient"),
            (EmailServiceError, 502, "transient"),
        ],
    )
    def test_status_code_and_kind(self, exc_class, status_code, kind):
        exc = exc_class()
        assert exc.status_code == status_code
        assert exc.kind == kind

    def test_policy_violation_keeps_stage(self):
        exc = PolicyViolation(message="Cannot request signature", stage="signature", current_status="draft")

        assert exc.stage == "signature"
        assert exc.context == {"current_status": "draft"}

    def test_invalid_transition_is_policy_violation(self):
        assert issubclass(InvalidStateTransitionError, PolicyViolation)


class TestExceptionHandler:
    """Test the FastAPI handler for AppException."""

    def test_handler_renders_json(self):
        app = FastAPI()
        app.add_exception_handler(AppException, app_exception_handler)

        @app.get("/missing")
        async def missing():
            raise ResourceNotFoundError(message="Proposal 9 not found", resource_type="Proposal", resource_id=9)

        client = TestClient(app)
        response = client.get("/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "ResourceNotFoundError"
        assert body["message"] == "Proposal 9 not found"
        assert body["details"] == {"resource_type": "Proposal", "resource_id": 9}
