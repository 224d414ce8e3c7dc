"""Domain error taxonomy.

Services raise these close to the point of detection; the API layer maps each one
onto the response envelope using `status_code`.
"""

from __future__ import annotations

from typing import Any, ClassVar


class DomainError(Exception):
    status_code: ClassVar[int] = 500
    error_code: ClassVar[str] = "INTERNAL_ERROR"
    default_message: ClassVar[str] = "Internal server error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class ValidationError(DomainError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid data"

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None) -> None:
        super().__init__(message, details=errors or None)
        self.errors = list(errors or [])


class UnauthorizedError(DomainError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class ForbiddenError(DomainError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Access denied"


class NotFoundError(DomainError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(DomainError):
    status_code = 409
    error_code = "CONFLICT"
    default_message = "Conflicting state"

    def __init__(
        self,
        message: str | None = None,
        *,
        current_status: str | None = None,
        allowed_statuses: list[str] | None = None,
    ) -> None:
        details: dict[str, Any] | None = None
        if current_status is not None:
            details = {"current_status": current_status}
            if allowed_statuses is not None:
                details["allowed_statuses"] = allowed_statuses
        super().__init__(message, details=details)
        self.current_status = current_status


class TooManyRequestsError(DomainError):
    status_code = 429
    error_code = "TOO_MANY_REQUESTS"
    default_message = "Too many requests"

    def __init__(self, message: str | None = None, *, retry_after_seconds: int) -> None:
        super().__init__(message, details={"retry_after_seconds": retry_after_seconds})
        self.retry_after_seconds = retry_after_seconds


class InternalError(DomainError):
    """Unexpected storage or runtime failure.

    Only the operation name and the original error string reach the client.
    """

    @classmethod
    def wrap(cls, operation: str, exc: BaseException) -> InternalError:
        return cls(f"{operation}: {exc}")


class ContentParseError(Exception):
    """Raised by strict normalization when content cannot be parsed as text/HTML."""
