"""Service exceptions.

Every error raised by the task engines carries an HTTP status and a stable
machine-readable code so the API layer can render it as
``{"error": {"message", "code", "details"}}`` without knowing where it came from.
"""

from typing import Any


class TaskhubError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"
    default_message: str = "An unexpected internal server error occurred."

    def __init__(self, message: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


class BadRequestError(TaskhubError):
    """Schema or validation failure: missing fields, invalid enum, negative points."""

    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad Request"


class AuthenticationError(TaskhubError):
    """Missing or invalid credentials."""

    status_code = 401
    code = "AUTHENTICATION_FAILED"
    default_message = "Authentication Failed"


class AuthorizationError(TaskhubError):
    """Caller is known but not allowed to perform the operation."""

    status_code = 403
    code = "AUTHORIZATION_FAILED"
    default_message = "Authorization Failed"


class NotFoundError(TaskhubError):
    """Entity is absent or belongs to another organization."""

    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not Found"


class ConflictError(TaskhubError):
    """Request conflicts with the current state of the entity."""

    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"
