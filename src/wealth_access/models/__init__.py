"""Models package - SQLAlchemy ORM models."""
from .audit import AuditEntry
from .enums import AuditAction, UserRole, UserStatus, UserType
from .user import User

__all__ = [
    "AuditAction",
    "AuditEntry",
    "User",
    "UserRole",
    "UserStatus",
    "UserType",
]
