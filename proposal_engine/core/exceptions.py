"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the engine and the API
2. HTTP status code mapping for FastAPI
3. A stable "kind" that the workflow engine converts into typed result
   errors at its public boundary
4. No sensitive data leaks in error messages

IMPORTANT: Engine helpers raise these; public engine methods catch them and
return result objects. Only the HTTP layer lets them escape to handlers.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"
    kind: str = "transient"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: verification codes must never be echoed back to a caller
        sensitive_fields = {"password", "token", "secret", "key", "verification_code"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Validation errors should return 400 Bad Request with details
    about which fields failed validation, helping users correct their input.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"
    kind = "validation"


class ConfigurationError(AppException):
    """
    Raised when a caller-supplied configuration is malformed.

    WHY: A broken approval chain (no levels, a level without approvers,
    more required approvals than approvers) blocks the operation that would
    use it, but is not a data validation problem on the proposal itself.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Invalid configuration"
    kind = "configuration"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    WHY: 404 Not Found is the standard HTTP status for missing resources.
    Including resource type and ID in context helps debugging.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"
    kind = "not_found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"
    kind = "policy"


class PolicyViolation(BusinessRuleViolation):
    """
    Raised when a workflow policy forbids the requested step.

    WHY: "Cannot request signature: proposal not approved" is a stage-level
    refusal, distinct from malformed input. Carries the workflow stage so
    callers can address the message to the right part of the UI.

    HTTP Status: 422 Unprocessable Entity
    """

    default_message = "Workflow policy violation"

    def __init__(self, message: Optional[str] = None, stage: Optional[str] = None, **context: Any):
        super().__init__(message, **context)
        self.stage = stage


class InvalidStateTransitionError(PolicyViolation):
    """
    Raised when an invalid state transition is attempted.

    WHY: The proposal lifecycle has a fixed legal-transition table.
    Attempting anything else (e.g. accepting a draft) fails with a clear
    message instead of silently writing a new status.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class EmailServiceError(ExternalServiceError):
    """
    Raised when email sending fails.

    WHY: Notification failures are best-effort; the dispatcher catches this,
    logs it and retries later without touching workflow state.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Email service error"


# ============================================================================
# Database Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when database operations fail.

    WHY: Database errors are caught at the engine boundary and converted
    to application errors with safe messages (no SQL exposed).

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"


class TransientError(DatabaseError):
    """
    Raised when a retryable I/O failure interrupts an operation.

    WHY: The whole operation is rolled back; the caller may retry.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Temporary failure, please retry"
