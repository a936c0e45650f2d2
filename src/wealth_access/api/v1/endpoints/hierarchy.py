"""
Hierarchy API Endpoints.

Read access to the organisational tree, scoped by the caller's position:
- Current user
- A user, their manager, subtree, chain of managers and subtree head-counts
- Access checks and accessible-user listings
- Reparenting (admin only)
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Query

from ....core.exceptions import UserNotFoundError
from ....core.rbac import AdminUser, CurrentUser, Decider, Store, UserInScope
from ....core.responses import GenericResponse
from ....models.enums import UserRole, UserStatus
from ....schemas.user import (
    AccessCheckResponse,
    ParentAssignment,
    RoleCountsResponse,
    UserListResponse,
    UserResponse,
)
from ....services.access_decider import AccessFilters

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/hierarchy", tags=["Hierarchy"])


def _user_list(users) -> UserListResponse:
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=len(users),
    )


# =============================================================================
# CURRENT USER
# =============================================================================

@router.get(
    "/me",
    response_model=GenericResponse[UserResponse],
    summary="Current user",
    description="Reconcile the caller's identity and return their user record.",
)
async def get_me(current_user: CurrentUser) -> GenericResponse[UserResponse]:
    return GenericResponse(
        message="Current user retrieved successfully",
        data=UserResponse.model_validate(current_user),
    )


# =============================================================================
# TREE READS (access-checked)
# =============================================================================

@router.get(
    "/users/{user_id}",
    response_model=GenericResponse[UserResponse],
    summary="Get user by ID",
)
async def get_user(
    user_id: int,
    current_user: UserInScope,
    store: Store,
) -> GenericResponse[UserResponse]:
    user = await store.get(user_id)
    if user is None:
        raise UserNotFoundError(user_id=user_id)
    return GenericResponse(
        message="User retrieved successfully",
        data=UserResponse.model_validate(user),
    )


@router.get(
    "/users/{user_id}/descendants",
    response_model=GenericResponse[UserListResponse],
    summary="List a user's subtree",
)
async def list_descendants(
    user_id: int,
    current_user: UserInScope,
    store: Store,
    direct: bool = Query(False, description="Only direct reports"),
) -> GenericResponse[UserListResponse]:
    users = await store.find_descendants(user_id, direct=direct)
    return GenericResponse(message="Descendants retrieved successfully", data=_user_list(users))


@router.get(
    "/users/{user_id}/ancestors",
    response_model=GenericResponse[UserListResponse],
    summary="List a user's managers, nearest first",
)
async def list_ancestors(
    user_id: int,
    current_user: UserInScope,
    store: Store,
) -> GenericResponse[UserListResponse]:
    users = await store.find_ancestors(user_id)
    return GenericResponse(message="Ancestors retrieved successfully", data=_user_list(users))


@router.get(
    "/users/{user_id}/parent",
    response_model=GenericResponse[UserResponse | None],
    summary="Get a user's direct manager",
    description="`data` is null for a root user.",
)
async def get_parent(
    user_id: int,
    current_user: UserInScope,
    store: Store,
) -> GenericResponse[UserResponse | None]:
    parent = await store.find_parent(user_id)
    return GenericResponse(
        message="Parent retrieved successfully" if parent else "User has no parent",
        data=UserResponse.model_validate(parent) if parent else None,
    )


@router.get(
    "/users/{user_id}/counts",
    response_model=GenericResponse[RoleCountsResponse],
    summary="Subtree head-count per role",
)
async def count_descendants(
    user_id: int,
    current_user: UserInScope,
    store: Store,
) -> GenericResponse[RoleCountsResponse]:
    counts = await store.count_descendants_by_role(user_id)
    return GenericResponse(
        message="Descendant counts retrieved successfully",
        data=RoleCountsResponse(user_id=user_id, counts=counts, total=sum(counts.values())),
    )


# =============================================================================
# ACCESS
# =============================================================================

@router.get(
    "/access/{target_id}",
    response_model=GenericResponse[AccessCheckResponse],
    summary="Can the caller access a user?",
)
async def check_access(
    target_id: int,
    current_user: CurrentUser,
    decider: Decider,
) -> GenericResponse[AccessCheckResponse]:
    allowed = await decider.can_access(current_user.id, target_id)
    return GenericResponse(
        message="Access evaluated",
        data=AccessCheckResponse(accessor_id=current_user.id, target_id=target_id, allowed=allowed),
    )


@router.get(
    "/accessible",
    response_model=GenericResponse[UserListResponse],
    summary="Users visible to the caller",
    description="Self plus subtree (everyone for the top role), capped at a fixed maximum.",
)
async def list_accessible(
    current_user: CurrentUser,
    decider: Decider,
    role: UserRole | None = Query(None, description="Filter by role"),
    status: UserStatus | None = Query(None, description="Filter by status"),
    branch_id: int | None = Query(None),
    zone_id: int | None = Query(None),
) -> GenericResponse[UserListResponse]:
    users = await decider.find_accessible_users(
        current_user.id,
        AccessFilters(
            role=role.value if role else None,
            status=status.value if status else None,
            branch_id=branch_id,
            zone_id=zone_id,
        ),
    )
    return GenericResponse(message="Accessible users retrieved successfully", data=_user_list(users))


# =============================================================================
# REPARENTING (admin)
# =============================================================================

@router.put(
    "/users/{user_id}/parent",
    response_model=GenericResponse[UserResponse],
    summary="Move a user (and their subtree) under a new manager",
)
async def assign_parent(
    user_id: int,
    body: ParentAssignment,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[UserResponse]:
    user = await store.assign_parent(user_id, body.parent_id, actor_id=admin.id)
    logger.info("admin_assigned_parent", user_id=user_id, parent_id=body.parent_id, admin_id=admin.id)
    return GenericResponse(
        message="Parent assigned successfully",
        data=UserResponse.model_validate(user),
    )


@router.delete(
    "/users/{user_id}/parent",
    response_model=GenericResponse[UserResponse],
    summary="Detach a user from their manager",
)
async def remove_parent(
    user_id: int,
    admin: AdminUser,
    store: Store,
) -> GenericResponse[UserResponse]:
    user = await store.remove_parent(user_id, actor_id=admin.id)
    logger.info("admin_removed_parent", user_id=user_id, admin_id=admin.id)
    return GenericResponse(
        message="Parent removed successfully",
        data=UserResponse.model_validate(user),
    )
