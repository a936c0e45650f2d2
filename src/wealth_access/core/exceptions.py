"""
Custom Exception Classes.

Provides a hierarchy of domain-specific exceptions that are automatically
converted to appropriate HTTP responses by the global exception handler.
"""

from typing import Any


class AppException(Exception):
    """
    Base exception for all application-specific errors.

    All custom exceptions should inherit from this class.
    The global exception handler converts these to HTTP responses.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "APP_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }

# ============================================
# 4xx Client Errors
# ============================================

class BadRequestError(AppException):
    """Invalid request data or parameters (400)."""

    def __init__(
        self,
        message: str = "Invalid request",
        error_code: str = "BAD_REQUEST",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details,
        )

class UnauthorizedError(AppException):
    """Authentication required or failed (401)."""

    def __init__(
        self,
        message: str = "Authentication required",
        error_code: str = "UNAUTHORIZED",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=401,
            details=details,
        )

class ForbiddenError(AppException):
    """Permission denied (403)."""

    def __init__(
        self,
        message: str = "Permission denied",
        error_code: str = "FORBIDDEN",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=403,
            details=details,
        )

class NotFoundError(AppException):
    """Resource not found (404)."""

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: str = "NOT_FOUND",
        resource_type: str | None = None,
        resource_id: str | int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=404,
            details=details,
        )

class ConflictError(AppException):
    """Resource conflict, e.g., duplicate entry (409)."""

    def __init__(
        self,
        message: str = "Resource conflict",
        error_code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details,
        )

# ============================================
# 5xx Server Errors
# ============================================

class ServiceUnavailableError(AppException):
    """Service temporarily unavailable (503)."""

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        error_code: str = "SERVICE_UNAVAILABLE",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details,
        )

# ============================================
# Domain-Specific Exceptions
# ============================================

class UserNotFoundError(NotFoundError):
    """User (or referenced parent) does not exist."""

    def __init__(
        self,
        user_id: int | None = None,
        login_key: str | None = None,
        message: str | None = None,
    ) -> None:
        identifier = user_id if user_id is not None else login_key
        super().__init__(
            message=message or f"User not found: {identifier}",
            error_code="USER_NOT_FOUND",
            resource_type="user",
            resource_id=identifier,
        )

class UserAlreadyExistsError(ConflictError):
    """A user with the same login key or external id already exists."""

    def __init__(self, login_key: str | None = None, external_id: str | None = None) -> None:
        details: dict[str, Any] = {}

        if login_key:
            details["login_key"] = login_key
        if external_id:
            details["external_id"] = external_id

        if login_key and external_id:
            message = (
                f"User with login key '{login_key}' or external id "
                f"'{external_id}' already exists"
            )
        elif external_id:
            message = f"User with external id '{external_id}' already exists"
        else:
            message = f"User with login key '{login_key}' already exists"

        super().__init__(
            message=message,
            error_code="USER_ALREADY_EXISTS",
            details=details,
        )

class HierarchyValidationError(BadRequestError):
    """A hierarchy mutation would break a tree invariant; nothing was applied.

    ``errors`` is a list of human-readable reasons, safe to show to the
    administrator performing the edit.
    """

    def __init__(
        self,
        errors: list[str],
        message: str = "Hierarchy validation failed",
        user_id: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"errors": list(errors)}
        if user_id is not None:
            details["user_id"] = user_id
        self.errors = list(errors)
        super().__init__(
            message=f"{message}: {'; '.join(errors)}" if errors else message,
            error_code="HIERARCHY_VALIDATION_FAILED",
            details=details,
        )

class StoreUnavailableError(ServiceUnavailableError):
    """The persistent store could not be reached or timed out."""

    def __init__(
        self,
        message: str = "User store temporarily unavailable",
        original_error: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if original_error:
            details["original_error"] = original_error
        super().__init__(
            message=message,
            error_code="STORE_UNAVAILABLE",
            retry_after=5,
            details=details,
        )
