"""
Admin API Endpoints.

Administrative user management for the hierarchy:
- Create, patch, activate/deactivate and hard-delete users
- Batch import (upsert by login key)
- Path repair
- Audit log browsing and per-action summary

All endpoints require the top-of-hierarchy role.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, status

from ....core.exceptions import BadRequestError, UserNotFoundError
from ....core.rbac import AdminUser, Store
from ....core.responses import GenericResponse
from ....models.enums import AuditAction, UserStatus
from ....repositories.audit_sink import AuditSink
from ....schemas.audit import AuditEntryResponse, AuditListResponse, AuditSummaryResponse
from ....schemas.user import (
    BulkImportFailureResponse,
    BulkImportRequest,
    BulkImportResponse,
    RepairPathsResponse,
    UserCreate,
    UserResponse,
    UserStatusUpdate,
    UserUpdate,
)
from ....services.bulk_reconciler import BulkReconciler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin - Hierarchy"])


# =============================================================================
# Dependencies
# =============================================================================

async def get_bulk_reconciler(store: Store) -> BulkReconciler:
    return BulkReconciler(store)


async def get_audit_sink(store: Store) -> AuditSink:
    return store.audit


Reconciler = Annotated[BulkReconciler, Depends(get_bulk_reconciler)]
Audit = Annotated[AuditSink, Depends(get_audit_sink)]


# =============================================================================
# USER MANAGEMENT
# =============================================================================

@router.post(
    "/users",
    response_model=GenericResponse[UserResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
)
async def create_user(
    body: UserCreate,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[UserResponse]:
    user = await store.create(body, actor_id=admin.id)
    return GenericResponse(message="User created successfully", data=UserResponse.model_validate(user))


@router.patch(
    "/users/{user_id}",
    response_model=GenericResponse[UserResponse],
    summary="Patch a user",
    description="Role and parent changes are validated against the surrounding tree.",
)
async def update_user(
    user_id: int,
    body: UserUpdate,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[UserResponse]:
    user = await store.update(user_id, body, actor_id=admin.id)
    return GenericResponse(message="User updated successfully", data=UserResponse.model_validate(user))


@router.patch(
    "/users/{user_id}/status",
    response_model=GenericResponse[UserResponse],
    summary="Activate/deactivate user",
    description="Soft delete: an inactive user keeps their place in the tree but cannot log in.",
)
async def update_user_status(
    user_id: int,
    body: UserStatusUpdate,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[UserResponse]:
    if body.status is UserStatus.ACTIVE:
        user = await store.activate(user_id, actor_id=admin.id)
    else:
        if user_id == admin.id:
            raise BadRequestError(
                "Cannot deactivate yourself. Ask another admin.",
                error_code="SELF_DEACTIVATION",
            )
        user = await store.deactivate(user_id, actor_id=admin.id)
    logger.info("admin_changed_user_status", user_id=user_id, status=body.status.value, admin_id=admin.id)
    return GenericResponse(
        message=f"User {'activated' if user.is_active else 'deactivated'} successfully",
        data=UserResponse.model_validate(user),
    )


@router.delete(
    "/users/{user_id}",
    response_model=GenericResponse[dict],
    summary="Hard-delete a user",
    description="Direct reports become roots of their own subtrees.",
)
async def delete_user(
    user_id: int,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[dict]:
    if not await store.delete(user_id, actor_id=admin.id):
        raise UserNotFoundError(user_id=user_id)
    logger.info("admin_deleted_user", user_id=user_id, admin_id=admin.id)
    return GenericResponse(message="User deleted successfully", data={"user_id": user_id})


# =============================================================================
# BULK OPERATIONS
# =============================================================================

@router.post(
    "/users/import",
    response_model=GenericResponse[BulkImportResponse],
    summary="Import users",
    description="Upsert a batch of users by login key; failures are reported per record.",
)
async def import_users(
    body: BulkImportRequest,
    admin: AdminUser,
    reconciler: Reconciler,
) -> GenericResponse[BulkImportResponse]:
    result = await reconciler.bulk_import(
        body.records,
        default_parent_id=body.default_parent_id,
        actor_id=admin.id,
    )
    return GenericResponse(
        message=f"Imported {result.success_count} users, {result.failed_count} failed",
        data=BulkImportResponse(
            success_count=result.success_count,
            failed_count=result.failed_count,
            errors=[
                BulkImportFailureResponse(record=failure.record, error=failure.error)
                for failure in result.errors
            ],
        ),
    )


@router.post(
    "/users/repair-paths",
    response_model=GenericResponse[RepairPathsResponse],
    summary="Rebuild hierarchy paths from parent links",
)
async def repair_paths(
    admin: AdminUser,
    store: Store,
) -> GenericResponse[RepairPathsResponse]:
    corrected = await store.repair_paths(actor_id=admin.id)
    return GenericResponse(
        message="Hierarchy paths repaired",
        data=RepairPathsResponse(corrected=corrected),
    )


# =============================================================================
# AUDIT
# =============================================================================

@router.get(
    "/audit",
    response_model=GenericResponse[AuditListResponse],
    summary="Browse the activity log",
)
async def list_audit_entries(
    admin: AdminUser,
    audit: Audit,
    action: AuditAction | None = Query(None, description="Filter by action"),
    actor_id: int | None = Query(None, description="Filter by actor"),
    resource_id: int | None = Query(None, description="History of one user"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> GenericResponse[AuditListResponse]:
    if resource_id is not None:
        entries = await audit.find_by_resource(resource_id)
    elif action is not None:
        entries = await audit.find_by_action(action, limit=limit)
    elif actor_id is not None:
        entries = await audit.find_by_actor(actor_id, limit=limit)
    else:
        entries = await audit.find_recent(limit=limit, offset=offset)
    return GenericResponse(
        message="Audit entries retrieved successfully",
        data=AuditListResponse(
            entries=[AuditEntryResponse.model_validate(e) for e in entries],
            total=len(entries),
        ),
    )


@router.get(
    "/audit/summary",
    response_model=GenericResponse[AuditSummaryResponse],
    summary="Activity counts per action",
)
async def audit_summary(
    admin: AdminUser,
    audit: Audit,
    since: datetime | None = Query(None, description="Only count entries at or after this time"),
) -> GenericResponse[AuditSummaryResponse]:
    counts = await audit.count_by_action(since=since)
    return GenericResponse(
        message="Audit summary retrieved successfully",
        data=AuditSummaryResponse(counts=counts, since=since, total=sum(counts.values())),
    )
