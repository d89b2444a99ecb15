"""
Error taxonomy.

Every failure a caller can see is one of these. Services and the route
guard raise them; the API layer renders them as
``{"success": false, "error": <code>, "message": <text>}`` with the
class's HTTP status.
"""

from __future__ import annotations

from typing import Any


class ExamHubError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationRequired(ExamHubError):
    """No token was presented."""

    status_code = 401
    code = "authentication_required"
    default_message = "Authentication required"


class InvalidToken(ExamHubError):
    """Signature, expiry or shape of the token is wrong."""

    status_code = 401
    code = "invalid_token"
    default_message = "Invalid or expired token"


class AccountNotFound(ExamHubError):
    """The token is valid but its subject no longer exists."""

    status_code = 404
    code = "account_not_found"
    default_message = "User not found"


class InsufficientRole(ExamHubError):
    status_code = 403
    code = "insufficient_role"
    default_message = "Insufficient permissions"


class ValidationFailed(ExamHubError):
    status_code = 400
    code = "validation_failed"
    default_message = "Validation failed"


class Conflict(ExamHubError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class Expired(ExamHubError):
    status_code = 400
    code = "expired"
    default_message = "Code has expired. Please request a new one."


class AlreadyInDesiredState(ExamHubError):
    status_code = 400
    code = "already_in_desired_state"
    default_message = "Nothing to change"


class NotFound(ExamHubError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class BusinessRuleViolation(ExamHubError):
    status_code = 400
    code = "business_rule_violation"
    default_message = "Operation not allowed"


class InvalidCredentials(ExamHubError):
    """Login with an unknown email or a wrong password."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password"
