"""Shared Enums for the application.

Defines enum types used across models and schemas.
"""
from enum import Enum


class UserRole(str, Enum):
    """Organisational role of a user.

    Declaration order is seniority order: the first member is the most
    senior. ``rank`` exposes that order as an integer (lower = more senior).

    Attributes:
        SUPER_ADMIN: Top of the hierarchy, unrestricted access
        DIRECTOR: Reports to a super admin
        ZONAL_HEAD: Heads a zone of branches
        BRANCH_MANAGER: Manages a branch
        RM: Relationship manager, owns client accounts
        CLIENT: End client, least senior
    """
    SUPER_ADMIN = "super_admin"
    DIRECTOR = "director"
    ZONAL_HEAD = "zonal_head"
    BRANCH_MANAGER = "branch_manager"
    RM = "rm"
    CLIENT = "client"

    @property
    def rank(self) -> int:
        """Seniority rank, 0 for the most senior role."""
        return ROLE_RANK[self.value]

    def outranks(self, other: "UserRole | str") -> bool:
        """True if this role is strictly more senior than ``other``."""
        return self.rank < UserRole(other).rank

    @classmethod
    def parse(cls, value: str | None) -> "UserRole | None":
        """Case-insensitive lookup; returns None for unknown values."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @classmethod
    def default(cls) -> "UserRole":
        """Return the default role for new users."""
        return cls.CLIENT


ROLE_RANK: dict[str, int] = {role.value: index for index, role in enumerate(UserRole)}


class UserStatus(str, Enum):
    """Account status. Inactive users stay in the tree but cannot authenticate."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserType(str, Enum):
    """Coarse population split used as a role fallback on first login."""
    INTERNAL = "internal"
    CLIENT = "client"

    @classmethod
    def for_role(cls, role: "UserRole | str") -> "UserType":
        return cls.CLIENT if UserRole(role) is UserRole.CLIENT else cls.INTERNAL


class AuditAction(str, Enum):
    """Action tags written to the activity log."""
    USER_LOGIN = "USER_LOGIN"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_ASSIGNED = "USER_ASSIGNED"
    ROLE_CHANGED = "ROLE_CHANGED"
    ROLE_DOWNGRADE_SKIPPED = "ROLE_DOWNGRADE_SKIPPED"
    BULK_IMPORT = "BULK_IMPORT"
    PATHS_REPAIRED = "PATHS_REPAIRED"
