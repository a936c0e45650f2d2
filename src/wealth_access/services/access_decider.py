"""Access Decider - may one user see another user's data?

The rule is purely positional: a user sees themselves and everyone in
their subtree; the top role sees everyone. Decisions never write.
"""
from __future__ import annotations

from dataclasses import dataclass

import structlog

from ..core.config import Settings, get_settings
from ..core.exceptions import ForbiddenError
from ..core.hierarchy_path import is_descendant_of
from ..models.user import User
from ..repositories.hierarchy_store import HierarchyStore

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccessFilters:
    """Optional conjunctive filters for accessible-user listings."""

    role: str | None = None
    status: str | None = None
    branch_id: int | None = None
    zone_id: int | None = None


class AccessDecider:
    """Hierarchy-based access decisions."""

    def __init__(self, store: HierarchyStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def _is_top(self, user: User) -> bool:
        return user.role == self.settings.TOP_ROLE

    async def can_access(self, accessor_id: int, target_id: int) -> bool:
        """True if ``accessor_id`` may act on ``target_id``'s data."""
        if accessor_id == target_id:
            return True

        accessor = await self.store.get(accessor_id)
        if accessor is None:
            log.warning("access_denied_unknown_accessor", accessor_id=accessor_id, target_id=target_id)
            return False
        if self._is_top(accessor):
            return True

        target = await self.store.get(target_id)
        if target is None:
            log.info("access_denied_unknown_target", accessor_id=accessor_id, target_id=target_id)
            return False

        allowed = is_descendant_of(target.hierarchy_path, accessor.hierarchy_path)
        if not allowed:
            log.info("access_denied_outside_subtree", accessor_id=accessor_id, target_id=target_id)
        return allowed

    async def ensure_can_access(self, accessor_id: int, target_id: int) -> None:
        """Raise ``ForbiddenError`` unless :meth:`can_access` allows it."""
        if not await self.can_access(accessor_id, target_id):
            raise ForbiddenError(
                "You do not have access to this user",
                error_code="ACCESS_DENIED",
                details={"target_id": target_id},
            )

    async def find_accessible_users(
        self,
        accessor_id: int,
        filters: AccessFilters | None = None,
    ) -> list[User]:
        """Users visible to ``accessor_id``, most senior first.

        Capped at ``ACCESSIBLE_USERS_LIMIT``; this is a safety cap, not
        pagination. An unknown accessor sees nobody.
        """
        accessor = await self.store.get(accessor_id)
        if accessor is None:
            return []

        filters = filters or AccessFilters()
        return await self.store.find_in_subtree(
            None if self._is_top(accessor) else accessor,
            role=filters.role,
            status=filters.status,
            branch_id=filters.branch_id,
            zone_id=filters.zone_id,
            limit=self.settings.ACCESSIBLE_USERS_LIMIT,
        )
