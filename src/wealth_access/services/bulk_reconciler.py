"""Bulk Reconciler - administrative batch import of users.

Records are upserted by login key, one transaction per record, so a bad
record never takes the rest of the batch down with it. A login key that
appears twice in the same batch is treated as a conflict rather than a
second update.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import AppException, UserAlreadyExistsError
from ..models.enums import UserRole
from ..repositories.audit_sink import AuditSink
from ..repositories.hierarchy_store import HierarchyStore

log = structlog.get_logger(__name__)

# Fields refreshed on users that already exist.
UPSERT_FIELDS = frozenset({
    "email",
    "name",
    "phone",
    "client_code",
    "employee_code",
    "branch_id",
    "zone_id",
})


class BulkUserRecord(BaseModel):
    """One row of an import batch."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    login_key: str = Field(..., min_length=1, max_length=100)
    external_id: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    role: str = UserRole.CLIENT.value
    parent_id: int | None = None
    branch_id: int | None = None
    zone_id: int | None = None
    client_code: str | None = None
    employee_code: str | None = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        role = UserRole.parse(v)
        if role is None:
            raise ValueError(f"Unknown role '{v}'")
        return role.value


class BulkImportFailure(BaseModel):
    record: dict[str, Any]
    error: str


class BulkImportResult(BaseModel):
    success_count: int = 0
    failed_count: int = 0
    errors: list[BulkImportFailure] = Field(default_factory=list)


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
    if isinstance(exc, AppException):
        return exc.message
    return str(exc)


class BulkReconciler:
    """Upserts batches of user records through the hierarchy store."""

    def __init__(self, store: HierarchyStore, audit: AuditSink | None = None) -> None:
        self.store = store
        self.audit = audit or store.audit

    async def bulk_import(
        self,
        records: Iterable[Mapping[str, Any]],
        default_parent_id: int | None = None,
        *,
        actor_id: int | None = None,
    ) -> BulkImportResult:
        """Import ``records``; failures are collected per record, never raised."""
        result = BulkImportResult()
        seen: set[str] = set()

        for index, raw in enumerate(records):
            try:
                record = BulkUserRecord.model_validate(raw)
                key = record.login_key.lower()
                if key in seen:
                    raise UserAlreadyExistsError(login_key=record.login_key)
                seen.add(key)
                await self._upsert(record, default_parent_id, actor_id)
                result.success_count += 1
            except (ValidationError, AppException, SQLAlchemyError) as exc:
                log.warning("bulk_import_record_failed", index=index, error_type=type(exc).__name__)
                result.failed_count += 1
                result.errors.append(
                    BulkImportFailure(
                        record=dict(raw) if isinstance(raw, Mapping) else {"value": repr(raw)},
                        error=_describe(exc),
                    )
                )

        log.info(
            "bulk_import_completed",
            success_count=result.success_count,
            failed_count=result.failed_count,
        )
        if actor_id is not None:
            await self.audit.log_bulk_import(actor_id, result.success_count, result.failed_count)
        return result

    async def _upsert(
        self,
        record: BulkUserRecord,
        default_parent_id: int | None,
        actor_id: int | None,
    ) -> None:
        existing = await self.store.find_by_login_key(record.login_key)
        if existing is not None:
            patch = record.model_dump(include=set(UPSERT_FIELDS), exclude_none=True)
            await self.store.update(existing.id, patch, actor_id=actor_id)
            return

        data = record.model_dump(exclude_none=True)
        data["parent_id"] = record.parent_id or default_parent_id
        await self.store.create(data, actor_id=actor_id)
