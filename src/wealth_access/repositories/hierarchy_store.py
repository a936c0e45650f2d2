"""Hierarchy Store - persistence of users and their organisational tree.

Every user row carries a materialized path (see ``core.hierarchy_path``) that
must always equal its parent's path plus its own id. All writes that move a
node rewrite the node and its whole subtree in one transaction, so readers
never observe a half-moved subtree.

Tree-shaped mutations (reparenting, role changes, deletes, repairs) are
serialised: in-process by an asyncio lock, and across processes on
PostgreSQL by a transaction-scoped advisory lock. Validation reads happen
while the lock is held.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager, nullcontext
from datetime import UTC, datetime
from typing import Any
from weakref import WeakKeyDictionary

import structlog
from sqlalchemy import String, case, func, literal, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.exceptions import (
    BadRequestError,
    HierarchyValidationError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from ..core.hierarchy_path import (
    child_path,
    depth_of,
    descendant_prefix,
    is_strict_descendant_of,
    segment_for,
)
from ..models.enums import ROLE_RANK, AuditAction, UserRole, UserStatus, UserType
from ..models.user import User
from .audit_sink import AuditSink

log = structlog.get_logger(__name__)

# Plain attributes an update may touch; role and parent_id are handled separately.
UPDATABLE_FIELDS = frozenset({
    "login_key",
    "external_id",
    "email",
    "name",
    "phone",
    "status",
    "user_type",
    "branch_id",
    "zone_id",
    "client_code",
    "employee_code",
})

CREATE_FIELDS = UPDATABLE_FIELDS | {"role", "parent_id"}

_tree_locks: WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = WeakKeyDictionary()


def _tree_lock() -> asyncio.Lock:
    """Lock serialising tree mutations within the running event loop."""
    loop = asyncio.get_running_loop()
    lock = _tree_locks.get(loop)
    if lock is None:
        lock = _tree_locks[loop] = asyncio.Lock()
    return lock


def role_rank_order():
    """SQL expression ordering rows by role seniority."""
    return case(ROLE_RANK, value=User.role, else_=len(ROLE_RANK))


def _as_dict(data: Any, *, exclude_unset: bool = False) -> dict[str, Any]:
    if hasattr(data, "model_dump"):
        return data.model_dump(exclude_unset=exclude_unset)
    return dict(data)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, (UserRole, UserStatus, UserType)) else value


class HierarchyStore:
    """Repository for users and the hierarchy edges between them."""

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.audit = audit or AuditSink(session)
        self.settings = settings or get_settings()

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def _one(self, query) -> User | None:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def _many(self, query) -> list[User]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def get(self, user_id: int) -> User | None:
        """Get user by ID."""
        return await self._one(select(User).where(User.id == user_id))

    async def find_by_login_key(self, login_key: str) -> User | None:
        """Get user by login key, ignoring case."""
        if not login_key:
            return None
        return await self._one(
            select(User).where(func.lower(User.login_key) == login_key.strip().lower())
        )

    async def find_by_external_id(self, external_id: str) -> User | None:
        if not external_id:
            return None
        return await self._one(select(User).where(User.external_id == external_id))

    async def find_by_email(self, email: str) -> User | None:
        """Get the earliest user registered with ``email``, ignoring case."""
        if not email:
            return None
        return await self._one(
            select(User)
            .where(func.lower(User.email) == email.strip().lower())
            .order_by(User.id)
            .limit(1)
        )

    async def find_parent(self, user_id: int) -> User | None:
        user = await self._require(user_id)
        if user.parent_id is None:
            return None
        return await self.get(user.parent_id)

    async def find_descendants(self, user_id: int, direct: bool = False) -> list[User]:
        """Users below ``user_id``.

        With ``direct`` only immediate reports are returned, ordered by role
        seniority then name; otherwise the whole subtree (excluding the user)
        ordered by depth then name.
        """
        node = await self._require(user_id)
        if direct:
            query = (
                select(User)
                .where(User.parent_id == node.id)
                .order_by(role_rank_order(), User.name, User.id)
            )
        else:
            query = (
                select(User)
                .where(User.hierarchy_path.startswith(descendant_prefix(node.hierarchy_path)))
                .order_by(User.hierarchy_level, User.name, User.id)
            )
        return await self._many(query)

    async def find_in_subtree(
        self,
        root: User | None,
        *,
        role: str | None = None,
        status: str | None = None,
        branch_id: int | None = None,
        zone_id: int | None = None,
        limit: int = 500,
    ) -> list[User]:
        """``root`` and everyone below it (everyone when ``root`` is None),
        filtered conjunctively and ordered by role seniority then name.
        """
        query = select(User)
        if root is not None:
            query = query.where(
                or_(
                    User.id == root.id,
                    User.hierarchy_path.startswith(descendant_prefix(root.hierarchy_path)),
                )
            )
        if role:
            query = query.where(User.role == role)
        if status:
            query = query.where(User.status == status)
        if branch_id is not None:
            query = query.where(User.branch_id == branch_id)
        if zone_id is not None:
            query = query.where(User.zone_id == zone_id)
        query = query.order_by(role_rank_order(), User.name, User.id).limit(limit)
        return await self._many(query)

    async def count_descendants_by_role(self, user_id: int) -> dict[str, int]:
        """Subtree head-count per role, most senior role first."""
        node = await self._require(user_id)
        query = (
            select(User.role, func.count(User.id))
            .where(User.hierarchy_path.startswith(descendant_prefix(node.hierarchy_path)))
            .group_by(User.role)
        )
        result = await self.session.execute(query)
        counts = dict(result.all())
        ordered = sorted(counts, key=lambda role: (ROLE_RANK.get(role, len(ROLE_RANK)), role))
        return {role: counts[role] for role in ordered if counts[role]}

    async def find_ancestors(self, user_id: int) -> list[User]:
        """Chain of managers above ``user_id``, immediate parent first."""
        node = await self._require(user_id)
        return await self._walk_up(node)

    async def _walk_up(self, node: User) -> list[User]:
        ancestors: list[User] = []
        seen = {node.id}
        parent_id = node.parent_id
        while parent_id is not None:
            if parent_id in seen:
                log.error("hierarchy_cycle_detected", user_id=node.id, repeated_id=parent_id)
                break
            if len(ancestors) >= self.settings.HIERARCHY_MAX_DEPTH:
                log.error(
                    "hierarchy_max_depth_exceeded",
                    user_id=node.id,
                    max_depth=self.settings.HIERARCHY_MAX_DEPTH,
                )
                break
            parent = await self.get(parent_id)
            if parent is None:
                log.warning("hierarchy_dangling_parent", user_id=node.id, parent_id=parent_id)
                break
            ancestors.append(parent)
            seen.add(parent.id)
            parent_id = parent.parent_id
        return ancestors

    async def _require(self, user_id: int, *, what: str = "User") -> User:
        user = await self.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id=user_id, message=f"{what} not found: {user_id}")
        return user

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def _rank_errors(parent: User, role: str) -> list[str]:
        parent_role = UserRole.parse(parent.role)
        if parent_role is None or not parent_role.outranks(role):
            return [f"Parent role '{parent.role}' must be more senior than role '{role}'"]
        return []

    async def _placement_errors(self, node: User, role: str, parent: User) -> list[str]:
        """Reasons ``parent`` cannot hold ``node`` (carrying ``role``)."""
        errors: list[str] = []
        if parent.id == node.id:
            errors.append(f"User {node.id} cannot be their own parent")
        errors.extend(self._rank_errors(parent, role))
        if parent.id != node.id:
            below_by_path = is_strict_descendant_of(parent.hierarchy_path, node.hierarchy_path)
            below_by_walk = node.id in {ancestor.id for ancestor in await self._walk_up(parent)}
            if below_by_path or below_by_walk:
                errors.append(
                    f"User {parent.id} reports to user {node.id}; "
                    "assigning it as parent would create a cycle"
                )
        return errors

    @staticmethod
    def _parse_role(value: Any) -> str:
        role = UserRole.parse(_plain(value))
        if role is None:
            raise HierarchyValidationError([f"Unknown role '{value}'"])
        return role.value

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @property
    def _is_postgres(self) -> bool:
        return self.session.get_bind().dialect.name == "postgresql"

    @asynccontextmanager
    async def _transaction(
        self,
        *,
        tree_lock: bool = False,
        login_key: str | None = None,
        external_id: str | None = None,
    ) -> AsyncIterator[None]:
        """Run the body as one unit of work and commit it.

        Any failure rolls everything back; a unique-constraint violation is
        reported as ``UserAlreadyExistsError``.
        """
        async with _tree_lock() if tree_lock else nullcontext():
            try:
                if tree_lock and self._is_postgres:
                    await self.session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": self.settings.HIERARCHY_LOCK_KEY},
                    )
                yield
                await self.session.commit()
            except IntegrityError as exc:
                await self.session.rollback()
                log.warning("user_unique_conflict", login_key=login_key, error=str(exc.orig))
                raise UserAlreadyExistsError(login_key=login_key, external_id=external_id) from exc
            except Exception:
                await self.session.rollback()
                raise

    async def _apply_parent(self, node: User, parent: User | None) -> int:
        """Attach ``node`` under ``parent`` and rebase its subtree.

        Must run inside a transaction. Returns the number of descendants whose
        path was rewritten.
        """
        old_path = node.hierarchy_path
        new_path = child_path(parent.hierarchy_path if parent else None, segment_for(node.id))
        new_level = depth_of(new_path)
        delta = new_level - node.hierarchy_level

        node.parent_id = parent.id if parent else None
        node.hierarchy_path = new_path
        node.hierarchy_level = new_level
        await self.session.flush()

        if not old_path or old_path == new_path:
            return 0
        return await self._rebase_subtree(old_path, new_path, delta)

    async def _rebase_subtree(self, old_path: str, new_path: str, level_delta: int) -> int:
        stmt = (
            update(User)
            .where(User.hierarchy_path.startswith(descendant_prefix(old_path)))
            .values(
                hierarchy_path=literal(new_path, String)
                + func.substr(User.hierarchy_path, len(old_path) + 1, type_=String),
                hierarchy_level=User.hierarchy_level + level_delta,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    # =========================================================================
    # CREATE OPERATIONS
    # =========================================================================

    async def create(
        self,
        data: Mapping[str, Any] | Any,
        *,
        actor_id: int | None = None,
        source: str | None = None,
    ) -> User:
        """Insert a user, optionally directly under a parent.

        ``source`` tags the audit entry with the flow that created the user.
        """
        values = {key: _plain(value) for key, value in _as_dict(data).items() if key in CREATE_FIELDS}
        login_key = (values.get("login_key") or "").strip()
        if not login_key:
            raise BadRequestError("login_key is required", error_code="LOGIN_KEY_REQUIRED")
        external_id = values.get("external_id") or None
        role = self._parse_role(values.get("role") or UserRole.default().value)
        parent_id = values.get("parent_id")

        async with self._transaction(
            tree_lock=parent_id is not None, login_key=login_key, external_id=external_id
        ):
            if await self.find_by_login_key(login_key) is not None:
                raise UserAlreadyExistsError(login_key=login_key)
            if external_id and await self.find_by_external_id(external_id) is not None:
                raise UserAlreadyExistsError(external_id=external_id)

            parent = None
            if parent_id is not None:
                parent = await self._require(parent_id, what="Parent user")
                errors = self._rank_errors(parent, role)
                if errors:
                    raise HierarchyValidationError(errors)

            email = values.get("email")
            user = User(
                login_key=login_key,
                external_id=external_id,
                email=email.strip().lower() if email else None,
                name=values.get("name"),
                phone=values.get("phone"),
                role=role,
                status=values.get("status") or UserStatus.ACTIVE.value,
                user_type=values.get("user_type") or UserType.for_role(role).value,
                parent_id=parent.id if parent else None,
                branch_id=values.get("branch_id"),
                zone_id=values.get("zone_id"),
                client_code=values.get("client_code"),
                employee_code=values.get("employee_code"),
                hierarchy_path="",
                hierarchy_level=0,
            )
            self.session.add(user)
            await self.session.flush()
            user.hierarchy_path = child_path(
                parent.hierarchy_path if parent else None, segment_for(user.id)
            )
            user.hierarchy_level = depth_of(user.hierarchy_path)

        log.info("user_created", user_id=user.id, role=role, parent_id=user.parent_id, source=source)
        detail: dict[str, Any] = {"role": role, "parent_id": user.parent_id}
        if source:
            detail["source"] = source
        await self.audit.log_user_created(actor_id, user.id, detail)
        # Refresh last: a failed audit write rolls back and expires loaded rows.
        await self.session.refresh(user)
        return user

    # =========================================================================
    # UPDATE OPERATIONS
    # =========================================================================

    async def assign_parent(
        self,
        user_id: int,
        new_parent_id: int | None,
        *,
        actor_id: int | None = None,
    ) -> User:
        """Move ``user_id`` (with its whole subtree) under ``new_parent_id``.

        ``None`` makes the user a root. Raises ``UserNotFoundError`` for an
        unknown user or parent and ``HierarchyValidationError`` if the move
        would break seniority or create a cycle; the tree is untouched then.
        """
        async with self._transaction(tree_lock=True):
            node = await self._require(user_id)
            parent = None
            if new_parent_id is not None:
                parent = await self._require(new_parent_id, what="Parent user")
                errors = await self._placement_errors(node, node.role, parent)
                if errors:
                    raise HierarchyValidationError(errors, user_id=node.id)
            old_parent_id = node.parent_id
            moved = await self._apply_parent(node, parent)

        log.info(
            "user_parent_assigned",
            user_id=node.id,
            old_parent_id=old_parent_id,
            new_parent_id=new_parent_id,
            moved_descendants=moved,
        )
        await self.audit.log_user_assigned(actor_id, node.id, old_parent_id, new_parent_id, moved)
        await self.session.refresh(node)
        return node

    async def remove_parent(self, user_id: int, *, actor_id: int | None = None) -> User:
        """Detach ``user_id`` so it becomes the root of its own subtree."""
        return await self.assign_parent(user_id, None, actor_id=actor_id)

    async def update(
        self,
        user_id: int,
        patch: Mapping[str, Any] | Any,
        *,
        actor_id: int | None = None,
    ) -> User:
        """Apply a field-level patch in a single transaction.

        Role and parent changes are validated against the resulting parent
        and against every direct report before anything is written.
        """
        fields = {key: _plain(value) for key, value in _as_dict(patch, exclude_unset=True).items()}
        unknown = set(fields) - CREATE_FIELDS
        if unknown:
            raise BadRequestError(
                f"Unknown user fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        new_role = self._parse_role(fields["role"]) if fields.get("role") is not None else None
        structural = new_role is not None or "parent_id" in fields

        async with self._transaction(
            tree_lock=structural,
            login_key=fields.get("login_key"),
            external_id=fields.get("external_id"),
        ):
            node = await self._require(user_id)
            old_role = node.role
            role = new_role or node.role
            role_changed = role != node.role
            parent_changed = "parent_id" in fields and fields["parent_id"] != node.parent_id
            target_parent_id = fields["parent_id"] if "parent_id" in fields else node.parent_id

            errors: list[str] = []
            parent = None
            if target_parent_id is not None and (role_changed or parent_changed):
                parent = await self._require(target_parent_id, what="Parent user")
                if parent_changed:
                    errors.extend(await self._placement_errors(node, role, parent))
                else:
                    errors.extend(self._rank_errors(parent, role))
            if role_changed:
                for child in await self.find_descendants(node.id, direct=True):
                    if not UserRole(role).outranks(child.role):
                        errors.append(
                            f"Role '{role}' must be more senior than role '{child.role}' "
                            f"of direct report {child.id}"
                        )
            if errors:
                raise HierarchyValidationError(errors, user_id=node.id)

            changes: dict[str, Any] = {}
            for field, value in fields.items():
                if field not in UPDATABLE_FIELDS:
                    continue
                if field == "email" and value:
                    value = value.strip().lower()
                if getattr(node, field) != value:
                    changes[field] = {"old": getattr(node, field), "new": value}
                    setattr(node, field, value)
            if role_changed:
                changes["role"] = {"old": old_role, "new": role}
                node.role = role
                if "user_type" not in fields:
                    node.user_type = UserType.for_role(role).value
            moved = 0
            if parent_changed:
                changes["parent_id"] = {"old": node.parent_id, "new": target_parent_id}
                moved = await self._apply_parent(node, parent)

        node_id = node.id
        if changes:
            log.info("user_updated", user_id=node_id, fields=sorted(changes), moved_descendants=moved)
            await self.audit.log_user_updated(actor_id, node_id, changes)
        if role_changed:
            await self.audit.log_role_changed(actor_id, node_id, old_role, role)
        await self.session.refresh(node)
        return node

    async def record_login(self, user_id: int, external_id: str | None = None) -> User:
        """Stamp the login time and link ``external_id`` if none is linked yet."""
        async with self._transaction(external_id=external_id):
            user = await self._require(user_id)
            user.last_login_at = datetime.now(UTC)
            if external_id and not user.external_id:
                user.external_id = external_id
                log.info("user_external_id_linked", user_id=user.id)
        await self.session.refresh(user)
        return user

    async def set_status(
        self,
        user_id: int,
        status: UserStatus | str,
        *,
        actor_id: int | None = None,
    ) -> User:
        return await self.update(user_id, {"status": UserStatus(_plain(status)).value}, actor_id=actor_id)

    async def deactivate(self, user_id: int, *, actor_id: int | None = None) -> User:
        """Soft delete: the user keeps their place in the tree but cannot log in."""
        return await self.set_status(user_id, UserStatus.INACTIVE, actor_id=actor_id)

    async def activate(self, user_id: int, *, actor_id: int | None = None) -> User:
        return await self.set_status(user_id, UserStatus.ACTIVE, actor_id=actor_id)

    # =========================================================================
    # DELETE / MAINTENANCE
    # =========================================================================

    async def delete(self, user_id: int, *, actor_id: int | None = None) -> bool:
        """Hard delete. Direct reports (with their subtrees) become roots first."""
        promoted: list[int] = []
        async with self._transaction(tree_lock=True):
            user = await self.get(user_id)
            if user is not None:
                for child in await self.find_descendants(user.id, direct=True):
                    await self._apply_parent(child, None)
                    promoted.append(child.id)
                await self.session.delete(user)

        if user is None:
            return False
        log.info("user_deleted", user_id=user_id, promoted_children=promoted)
        await self.audit.log_user_deleted(actor_id, user_id, {"promoted_children": promoted})
        return True

    async def repair_paths(self, *, actor_id: int | None = None) -> int:
        """Recompute every path and level from ``parent_id``, roots first.

        Users whose parent row is gone become roots. Users unreachable from
        any root (a cycle in stored data) are logged and left untouched.
        Returns the number of rows corrected.
        """
        corrected = 0
        async with self._transaction(tree_lock=True):
            users: Sequence[User] = await self._many(select(User).order_by(User.id))
            known = {user.id for user in users}
            children: dict[int | None, list[User]] = defaultdict(list)
            for user in users:
                children[user.parent_id if user.parent_id in known else None].append(user)

            queue: deque[tuple[User, User | None]] = deque((root, None) for root in children[None])
            visited: set[int] = set()
            while queue:
                user, parent = queue.popleft()
                if user.id in visited:
                    continue
                visited.add(user.id)
                expected_path = child_path(
                    parent.hierarchy_path if parent else None, segment_for(user.id)
                )
                expected_level = depth_of(expected_path)
                expected_parent_id = parent.id if parent else None
                if (
                    user.hierarchy_path != expected_path
                    or user.hierarchy_level != expected_level
                    or user.parent_id != expected_parent_id
                ):
                    user.hierarchy_path = expected_path
                    user.hierarchy_level = expected_level
                    user.parent_id = expected_parent_id
                    corrected += 1
                queue.extend((child, user) for child in children[user.id])

            unreachable = sorted(known - visited)
            if unreachable:
                log.error("hierarchy_repair_unreachable_users", user_ids=unreachable)

        log.info("hierarchy_paths_repaired", corrected=corrected, unreachable=len(unreachable))
        await self.audit.record(
            actor_id,
            AuditAction.PATHS_REPAIRED,
            detail={"corrected": corrected, "unreachable": unreachable},
        )
        return corrected
