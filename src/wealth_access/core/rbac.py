"""Hierarchy-aware access control FastAPI dependencies.

Token verification happens upstream: the verifying middleware stores the
decoded claims on ``request.state.verified_claims``. These dependencies
reconcile the claims to a local user and enforce positional access.

Usage:
    @router.get("/hierarchy/users/{user_id}")
    async def get_user(user_id: int, current_user: UserInScope):
        ...

    @router.post("/admin/users/import")
    async def import_users(admin: AdminUser):
        ...
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated

import structlog
from fastapi import Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import get_db
from ..models.enums import UserType
from ..models.user import User
from ..repositories.hierarchy_store import HierarchyStore
from ..schemas.auth import VerifiedClaims
from ..services.access_decider import AccessDecider
from ..services.identity_sync import IdentitySyncEngine
from .config import Settings, get_settings
from .exceptions import ForbiddenError, UnauthorizedError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

async def get_hierarchy_store(
    settings: Annotated[Settings, Depends(get_settings)],
    db: AsyncSession = Depends(get_db),
) -> HierarchyStore:
    return HierarchyStore(db, settings=settings)


async def get_access_decider(
    store: Annotated[HierarchyStore, Depends(get_hierarchy_store)],
) -> AccessDecider:
    return AccessDecider(store, settings=store.settings)


async def get_identity_sync(
    store: Annotated[HierarchyStore, Depends(get_hierarchy_store)],
) -> IdentitySyncEngine:
    return IdentitySyncEngine(store, settings=store.settings)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def get_verified_claims(request: Request) -> VerifiedClaims:
    """Claims placed on the request by the token-verification middleware.

    Raises:
        UnauthorizedError: No claims, or claims missing required attributes.
    """
    claims = getattr(request.state, "verified_claims", None)
    if claims is None:
        raise UnauthorizedError(message="Authentication required", error_code="UNAUTHORIZED")
    if isinstance(claims, VerifiedClaims):
        return claims
    if isinstance(claims, Mapping):
        try:
            return VerifiedClaims.from_token_payload(claims)
        except ValidationError as exc:
            logger.warning("verified_claims_incomplete", error_count=exc.error_count())
            raise UnauthorizedError(
                message="Identity claims are incomplete",
                error_code="INVALID_CLAIMS",
            ) from exc
    raise UnauthorizedError(message="Unsupported identity claims", error_code="INVALID_CLAIMS")


async def get_current_user(
    request: Request,
    claims: Annotated[VerifiedClaims, Depends(get_verified_claims)],
    sync: Annotated[IdentitySyncEngine, Depends(get_identity_sync)],
) -> User:
    """Reconcile the verified claims and return the active local user.

    Fails closed: any reconciliation error rejects the request.

    Raises:
        ForbiddenError: User account is inactive.
    """
    hint = getattr(request.state, "user_type_hint", None) or UserType.CLIENT
    user = await sync.reconcile(
        claims,
        hint,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    if not user.is_active:
        logger.warning("inactive_user_access_attempt", user_id=user.id)
        raise ForbiddenError(
            message="Your account has been deactivated. Please contact administrator.",
            error_code="USER_INACTIVE",
        )

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

async def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User:
    """Require the top-of-hierarchy role. Raises ForbiddenError otherwise."""
    if current_user.role != settings.TOP_ROLE:
        logger.warning(
            "non_admin_access_attempt",
            user_id=current_user.id,
            role=current_user.role,
        )
        raise ForbiddenError(message="Admin access required", error_code="ADMIN_REQUIRED")
    return current_user


async def require_access_to(
    user_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    decider: Annotated[AccessDecider, Depends(get_access_decider)],
) -> User:
    """Require the caller to be allowed to see ``user_id`` (path parameter)."""
    await decider.ensure_can_access(current_user.id, user_id)
    return current_user


# ---------------------------------------------------------------------------
# Convenient type aliases for endpoint signatures
# ---------------------------------------------------------------------------
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_admin)]
UserInScope = Annotated[User, Depends(require_access_to)]
Store = Annotated[HierarchyStore, Depends(get_hierarchy_store)]
Decider = Annotated[AccessDecider, Depends(get_access_decider)]
