"""Audit log response schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: int | None = None
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    detail: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime | None = None


class AuditListResponse(BaseModel):
    entries: list[AuditEntryResponse]
    total: int


class AuditSummaryResponse(BaseModel):
    """Entry counts per action."""

    counts: dict[str, int]
    since: datetime | None = None
    total: int
