"""
Domain Error Taxonomy

Every error raised by the domain carries the HTTP status it maps to,
a stable machine readable code and optional structured details.
The API layer turns them into responses without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for all errors raised by domain services."""

    status_code = 400
    default_code = "error"
    default_message = "The request could not be processed."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class RequestValidationError(DomainError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 422
    default_code = "validation_error"
    default_message = "Validation failed."

    def __init__(self, errors: dict[str, list[str]], message: str | None = None) -> None:
        self.errors = errors
        super().__init__(message, details={"errors": errors})


class NotFoundError(DomainError):
    status_code = 404
    default_code = "not_found"
    default_message = "Not found."


class PermissionDeniedError(DomainError):
    status_code = 403
    default_code = "permission_denied"
    default_message = "You do not have permission to perform this action."


class ConflictError(DomainError):
    """The request clashes with the current state of the system."""

    status_code = 409
    default_code = "conflict"
    default_message = "The request conflicts with the current state."


class RateLimitError(DomainError):
    status_code = 429
    default_code = "rate_limited"
    default_message = "Too many active requests."


class InfrastructureError(DomainError):
    """
    Persistence or locking failure.

    The message is generic on purpose: internals are logged where the
    failure happens, not returned to the caller.
    """

    status_code = 500
    default_code = "infrastructure_error"
    default_message = "An unexpected error occurred. Please try again later."


class LockTimeoutError(InfrastructureError):
    default_code = "lock_timeout"
    default_message = "The resource is busy. Please try again."
