"""Verified identity claims.

The token-verification layer in front of this service checks signature and
expiry and hands over the decoded payload. This module only models the
claims the hierarchy core needs; raw tokens never reach it.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VerifiedClaims(BaseModel):
    """Identity attributes asserted by the identity provider."""

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(
        ...,
        min_length=1,
        description="Stable identity-provider subject (the 'sub' claim)",
    )
    login_name: str = Field(
        ...,
        min_length=1,
        description="Login name; becomes the user's login key",
        examples=["rm.sharma", "CL00123"],
    )
    email: str | None = Field(None, description="Email address, if asserted")
    name: str | None = Field(None, description="Display name, if asserted")
    phone: str | None = Field(None, description="Phone number, if asserted")
    groups: tuple[str, ...] = Field(
        default=(),
        description="Group memberships in the order the provider lists them",
    )
    role_attribute: str | None = Field(
        None,
        description="Explicit role attribute (custom:role), used when no group maps",
    )

    @field_validator("login_name", "subject_id")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str | None) -> str | None:
        return v.strip().lower() if v and v.strip() else None

    @field_validator("groups", mode="before")
    @classmethod
    def coerce_groups(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(part.strip() for part in v.split(",") if part.strip())
        return v

    @classmethod
    def from_token_payload(cls, payload: Mapping[str, Any]) -> "VerifiedClaims":
        """Map a decoded Cognito-style ID token payload onto claims."""
        login_name = (
            payload.get("cognito:username")
            or payload.get("username")
            or payload.get("email")
            or payload.get("sub")
        )
        return cls(
            subject_id=payload.get("sub") or "",
            login_name=login_name or "",
            email=payload.get("email"),
            name=payload.get("name"),
            phone=payload.get("phone_number"),
            groups=payload.get("cognito:groups") or (),
            role_attribute=payload.get("custom:role"),
        )
