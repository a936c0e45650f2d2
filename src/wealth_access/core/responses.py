"""
Standardized API Response Schemas.

Every endpoint answers with the same envelope: ``GenericResponse`` on
success, ``ErrorResponse`` (built by the global exception handlers) on
failure.
"""
from datetime import UTC, datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

# Generic type for response data
T = TypeVar("T")


class ResponseMeta(BaseModel):
    """Metadata included in all API responses."""

    request_id: str | None = Field(
        default=None,
        description="Unique request identifier for tracing"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Response timestamp (UTC)"
    )
    version: str = Field(default="v1", description="API version")


class GenericResponse(BaseModel, Generic[T]):
    """
    Wrapper for successful API responses.

    Example:
        ```python
        @router.get("/hierarchy/me", response_model=GenericResponse[UserResponse])
        async def me(current_user: CurrentUser) -> GenericResponse[UserResponse]:
            return GenericResponse(
                message="Current user",
                data=UserResponse.model_validate(current_user),
            )
        ```
    """

    success: bool = Field(default=True)
    message: str = Field(description="Human-readable response message")
    data: T = Field(description="Response payload")
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    details: dict | None = Field(
        default=None,
        description="Additional error context, e.g. hierarchy validation errors"
    )


class ErrorResponse(BaseModel):
    """Error envelope produced by the global exception handlers."""

    success: bool = Field(default=False)
    error: ErrorDetail
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class HealthCheck(BaseModel):
    """Individual health check result."""

    status: str = Field(description="Component status: healthy/unhealthy")
    latency_ms: float | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str = Field(description="Service health status")
    service: str
    version: str
    environment: str
    checks: dict[str, HealthCheck] = Field(default_factory=dict)
