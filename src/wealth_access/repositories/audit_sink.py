"""Audit Sink - append-only activity log for hierarchy-affecting actions.

Writes are best-effort: they run after the audited mutation has committed,
and a failure to persist the entry is logged and swallowed so it can never
undo or fail the mutation itself.
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit import AuditEntry
from ..models.enums import AuditAction

log = structlog.get_logger(__name__)

USERS_RESOURCE = "users"


class AuditSink:
    """Records and queries audit entries on the caller's session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def record(
        self,
        actor_id: int | None,
        action: AuditAction | str,
        resource_type: str | None = USERS_RESOURCE,
        resource_id: int | str | None = None,
        detail: dict[str, Any] | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEntry | None:
        """Append one entry. Returns None if the entry could not be stored."""
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        entry = AuditEntry(
            actor_id=actor_id,
            action=action_value,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            detail=detail,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            self.session.add(entry)
            await self.session.commit()
        except SQLAlchemyError as exc:
            log.error(
                "audit_record_failed",
                action=action_value,
                resource_id=entry.resource_id,
                error=str(exc),
            )
            try:
                await self.session.rollback()
            except SQLAlchemyError:
                log.warning("audit_rollback_failed", action=action_value)
            return None

        log.debug("audit_recorded", action=action_value, actor_id=actor_id, resource_id=entry.resource_id)
        return entry

    async def log_login(
        self,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEntry | None:
        return await self.record(
            user_id,
            AuditAction.USER_LOGIN,
            resource_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_user_created(
        self, actor_id: int | None, user_id: int, detail: dict[str, Any] | None = None
    ) -> AuditEntry | None:
        return await self.record(actor_id, AuditAction.USER_CREATED, resource_id=user_id, detail=detail)

    async def log_user_updated(
        self, actor_id: int | None, user_id: int, changes: dict[str, Any]
    ) -> AuditEntry | None:
        return await self.record(
            actor_id, AuditAction.USER_UPDATED, resource_id=user_id, detail={"changes": changes}
        )

    async def log_user_deleted(
        self, actor_id: int | None, user_id: int, detail: dict[str, Any] | None = None
    ) -> AuditEntry | None:
        return await self.record(actor_id, AuditAction.USER_DELETED, resource_id=user_id, detail=detail)

    async def log_user_assigned(
        self,
        actor_id: int | None,
        user_id: int,
        old_parent_id: int | None,
        new_parent_id: int | None,
        moved_descendants: int = 0,
    ) -> AuditEntry | None:
        return await self.record(
            actor_id,
            AuditAction.USER_ASSIGNED,
            resource_id=user_id,
            detail={
                "old_parent_id": old_parent_id,
                "new_parent_id": new_parent_id,
                "moved_descendants": moved_descendants,
            },
        )

    async def log_role_changed(
        self, actor_id: int | None, user_id: int, old_role: str, new_role: str
    ) -> AuditEntry | None:
        return await self.record(
            actor_id,
            AuditAction.ROLE_CHANGED,
            resource_id=user_id,
            detail={"old_role": old_role, "new_role": new_role},
        )

    async def log_bulk_import(
        self, actor_id: int | None, success_count: int, failed_count: int
    ) -> AuditEntry | None:
        return await self.record(
            actor_id,
            AuditAction.BULK_IMPORT,
            resource_id=None,
            detail={"success_count": success_count, "failed_count": failed_count},
        )

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def find_by_actor(self, actor_id: int, limit: int = 100) -> Sequence[AuditEntry]:
        query = (
            select(AuditEntry)
            .where(AuditEntry.actor_id == actor_id)
            .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def find_by_action(self, action: AuditAction | str, limit: int = 100) -> Sequence[AuditEntry]:
        action_value = action.value if isinstance(action, AuditAction) else action
        query = (
            select(AuditEntry)
            .where(AuditEntry.action == action_value)
            .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def find_by_resource(
        self, resource_id: int | str, resource_type: str = USERS_RESOURCE
    ) -> Sequence[AuditEntry]:
        """Full history of one resource, oldest first."""
        query = (
            select(AuditEntry)
            .where(
                AuditEntry.resource_type == resource_type,
                AuditEntry.resource_id == str(resource_id),
            )
            .order_by(AuditEntry.created_at, AuditEntry.id)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def find_recent(self, limit: int = 100, offset: int = 0) -> Sequence[AuditEntry]:
        query = (
            select(AuditEntry)
            .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def count_by_action(self, since: datetime | None = None) -> dict[str, int]:
        """Entry counts per action, optionally restricted to entries after ``since``."""
        query = select(AuditEntry.action, func.count(AuditEntry.id)).group_by(AuditEntry.action)
        if since is not None:
            query = query.where(AuditEntry.created_at >= since)
        result = await self.session.execute(query)
        return {action: count for action, count in result.all()}
