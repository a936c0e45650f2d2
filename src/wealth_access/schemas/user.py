"""
User Schemas for the hierarchy API.

Pydantic models for user management requests and responses.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.enums import UserRole, UserStatus, UserType


def _validate_role(v: str | None) -> str | None:
    if v is None:
        return v
    role = UserRole.parse(v)
    if role is None:
        allowed = [r.value for r in UserRole]
        raise ValueError(f"Role must be one of: {', '.join(allowed)}")
    return role.value


def _validate_email(v: str | None) -> str | None:
    if v is None or not v.strip():
        return None
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("Invalid email address")
    return v


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class UserCreate(BaseModel):
    """Schema for creating a new user."""

    login_key: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Login name or client code, unique case-insensitively",
        examples=["rm.sharma", "CL00123"],
    )
    external_id: str | None = Field(None, description="Identity-provider subject id")
    email: str | None = Field(None, examples=["user@example.com"])
    name: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=20)
    role: str = Field(
        default=UserRole.CLIENT.value,
        description="One of: super_admin, director, zonal_head, branch_manager, rm, client",
    )
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    user_type: UserType | None = Field(None, description="Derived from role when omitted")
    parent_id: int | None = Field(None, description="Manager to place the user under")
    branch_id: int | None = None
    zone_id: int | None = None
    client_code: str | None = None
    employee_code: str | None = None

    @field_validator("login_key")
    @classmethod
    def strip_login_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("login_key must not be blank")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate role is one of the allowed values."""
        return _validate_role(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        return _validate_email(v)

    @field_validator("parent_id")
    @classmethod
    def zero_parent_is_root(cls, v: int | None) -> int | None:
        """Treat 0 as 'no parent'."""
        return None if v == 0 else v


class UserUpdate(BaseModel):
    """Schema for patching a user. Only fields that are sent are applied."""

    login_key: str | None = Field(None, min_length=1, max_length=100)
    email: str | None = None
    name: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=20)
    role: str | None = None
    status: UserStatus | None = None
    parent_id: int | None = None
    branch_id: int | None = None
    zone_id: int | None = None
    client_code: str | None = None
    employee_code: str | None = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str | None) -> str | None:
        """Validate role if provided."""
        return _validate_role(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        return _validate_email(v)


class UserStatusUpdate(BaseModel):
    """Activate or deactivate (soft delete) a user."""

    status: UserStatus


class ParentAssignment(BaseModel):
    """Body of a reparent request."""

    parent_id: int | None = Field(
        ...,
        description="New manager; null makes the user a root",
    )


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class UserResponse(BaseModel):
    """Schema for user response."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="User ID")
    login_key: str
    external_id: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    role: str
    status: str
    user_type: str
    parent_id: int | None = None
    hierarchy_path: str
    hierarchy_level: int
    branch_id: int | None = None
    zone_id: int | None = None
    client_code: str | None = None
    employee_code: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None


class UserListResponse(BaseModel):
    """Schema for a list of users."""

    users: list[UserResponse]
    total: int = Field(..., description="Number of users returned")


class AccessCheckResponse(BaseModel):
    accessor_id: int
    target_id: int
    allowed: bool


class RoleCountsResponse(BaseModel):
    """Subtree head-count per role, most senior role first."""

    user_id: int
    counts: dict[str, int]
    total: int


class BulkImportRequest(BaseModel):
    """Batch of user records to upsert by login key."""

    records: list[dict] = Field(..., min_length=1, max_length=5000)
    default_parent_id: int | None = Field(
        None,
        description="Parent for records that do not name one",
    )


class BulkImportFailureResponse(BaseModel):
    record: dict
    error: str


class BulkImportResponse(BaseModel):
    success_count: int
    failed_count: int
    errors: list[BulkImportFailureResponse]


class RepairPathsResponse(BaseModel):
    corrected: int = Field(..., description="Rows whose path, level or parent was fixed")
