"""Identity Sync - reconcile verified identity claims with local users.

On every authenticated request the verified claims are matched to a local
user (by external id, then login key, then email). Unknown identities are
provisioned as root-level users; known ones get their login stamped and
their role synchronised with the identity provider's groups.

Only one role change is ever refused: demoting a privileged user to
``client``. Such a demotion usually means the provider lost the user's
group membership, so it is logged and audited instead of applied.
Inactive users are turned away before anything about the login is written.
"""
from __future__ import annotations

from collections.abc import Mapping

import structlog

from ..core.config import Settings, get_settings
from ..core.exceptions import (
    ForbiddenError,
    HierarchyValidationError,
    StoreUnavailableError,
    UserAlreadyExistsError,
)
from ..db.session import STORE_UNAVAILABLE_ERRORS
from ..models.enums import AuditAction, UserRole, UserStatus, UserType
from ..models.user import User
from ..repositories.audit_sink import AuditSink
from ..repositories.hierarchy_store import HierarchyStore
from ..schemas.auth import VerifiedClaims

log = structlog.get_logger(__name__)

IDENTITY_SYNC_SOURCE = "identity_sync"


def derive_role(
    claims: VerifiedClaims,
    user_type_hint: UserType | str = UserType.CLIENT,
    group_role_map: Mapping[str, str] | None = None,
) -> UserRole:
    """Role implied by ``claims``.

    Precedence:
        1. first group (in provider order) present in ``group_role_map``
        2. the explicit role attribute, if it names a known role
        3. ``rm`` for internal users, ``client`` otherwise
    """
    if group_role_map is None:
        group_role_map = get_settings().IDENTITY_GROUP_ROLE_MAP

    for group in claims.groups:
        mapped = UserRole.parse(group_role_map.get(group))
        if mapped is not None:
            return mapped

    attribute_role = UserRole.parse(claims.role_attribute)
    if attribute_role is not None:
        return attribute_role

    if UserType(user_type_hint) is UserType.INTERNAL:
        return UserRole.RM
    return UserRole.CLIENT


class IdentitySyncEngine:
    """Resolves or provisions the local user behind a set of claims."""

    def __init__(
        self,
        store: HierarchyStore,
        audit: AuditSink | None = None,
        group_role_map: Mapping[str, str] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.audit = audit or store.audit
        self.settings = settings or store.settings
        self.group_role_map = dict(
            group_role_map if group_role_map is not None else self.settings.IDENTITY_GROUP_ROLE_MAP
        )
        self.privileged_roles = frozenset(self.settings.PRIVILEGED_ROLES)

    async def reconcile(
        self,
        claims: VerifiedClaims,
        user_type_hint: UserType | str = UserType.CLIENT,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Return the local user for ``claims``, creating it on first login.

        Raises:
            StoreUnavailableError: the user store could not be reached
            ForbiddenError: the user is inactive (``USER_INACTIVE``), or the
                synced role does not fit the user's current place in the
                tree (``ROLE_SYNC_CONFLICT``)
        """
        try:
            user = await self._resolve(claims)
            if user is not None:
                return await self._sync_existing(user, claims, user_type_hint, ip_address, user_agent)

            try:
                return await self._provision(claims, user_type_hint)
            except UserAlreadyExistsError:
                # A concurrent first login for the same identity won the insert.
                user = await self._resolve(claims)
                if user is None:
                    raise
                log.info("identity_sync_conflict_resolved", user_id=user.id, subject_id=claims.subject_id)
                return await self._sync_existing(user, claims, user_type_hint, ip_address, user_agent)
        except STORE_UNAVAILABLE_ERRORS as exc:
            log.error(
                "identity_sync_store_unavailable",
                subject_id=claims.subject_id,
                error=str(exc),
            )
            raise StoreUnavailableError(original_error=type(exc).__name__) from exc

    async def _resolve(self, claims: VerifiedClaims) -> User | None:
        user = await self.store.find_by_external_id(claims.subject_id)
        if user is None:
            user = await self.store.find_by_login_key(claims.login_name)
        if user is None and claims.email:
            user = await self.store.find_by_email(claims.email)
        return user

    async def _sync_existing(
        self,
        user: User,
        claims: VerifiedClaims,
        user_type_hint: UserType | str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> User:
        user_id, current_role = user.id, user.role
        if not user.is_active:
            log.warning("inactive_user_login_rejected", user_id=user_id)
            raise ForbiddenError(
                message="Your account has been deactivated. Please contact administrator.",
                error_code="USER_INACTIVE",
            )
        if user.external_id and user.external_id != claims.subject_id:
            log.warning(
                "identity_external_id_mismatch",
                user_id=user_id,
                subject_id=claims.subject_id,
            )

        derived = derive_role(claims, user_type_hint, self.group_role_map)
        downgrade = derived is UserRole.CLIENT and derived.value != current_role
        if downgrade and current_role in self.privileged_roles:
            log.warning(
                "role_downgrade_skipped",
                user_id=user_id,
                current_role=current_role,
                derived_role=derived.value,
            )
            await self.audit.record(
                None,
                AuditAction.ROLE_DOWNGRADE_SKIPPED,
                resource_id=user_id,
                detail={"current_role": current_role, "derived_role": derived.value},
            )
        elif derived.value != current_role:
            await self._sync_role(user_id, current_role, derived)

        # Login is stamped only once the user is known to be allowed in.
        await self.audit.log_login(user_id, ip_address=ip_address, user_agent=user_agent)
        return await self.store.record_login(user_id, external_id=claims.subject_id)

    async def _sync_role(self, user_id: int, current_role: str, derived: UserRole) -> None:
        try:
            await self.store.update(user_id, {"role": derived.value})
        except HierarchyValidationError as exc:
            log.warning(
                "role_sync_conflict",
                user_id=user_id,
                current_role=current_role,
                derived_role=derived.value,
                errors=exc.details.get("errors"),
            )
            raise ForbiddenError(
                message="Your role could not be synchronised. Please contact administrator.",
                error_code="ROLE_SYNC_CONFLICT",
            ) from exc
        log.info("user_role_synced", user_id=user_id, old_role=current_role, new_role=derived.value)

    async def _provision(self, claims: VerifiedClaims, user_type_hint: UserType | str) -> User:
        role = derive_role(claims, user_type_hint, self.group_role_map)
        email_name = claims.email.split("@", 1)[0] if claims.email else None
        user = await self.store.create(
            {
                "login_key": claims.login_name,
                "external_id": claims.subject_id,
                "email": claims.email,
                "name": claims.name or email_name or claims.login_name,
                "phone": claims.phone,
                "role": role.value,
                "status": UserStatus.ACTIVE.value,
                "client_code": claims.login_name if role is UserRole.CLIENT else None,
            },
            source=IDENTITY_SYNC_SOURCE,
        )
        log.info("user_provisioned_from_identity", user_id=user.id, role=role.value)
        return await self.store.record_login(user.id)
