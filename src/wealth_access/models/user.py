"""
User Model - a node of the organisational tree.

SQLAlchemy 2.0 ORM model for portal users (staff and clients) and the
hierarchy that scopes their data access.

Design:
    - parent_id is the tree edge; NULL means the user is a root
    - hierarchy_path / hierarchy_level are derived from parent_id and are
      maintained by HierarchyStore inside the same transaction as the edge
    - Soft delete: status='inactive' keeps the node in the tree
    - external_id links the row to the identity provider subject
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db.session import Base
from .enums import UserRole, UserStatus, UserType


class User(Base):
    """
    User entity and hierarchy node.

    Attributes:
        id: Primary key, also the node's path segment
        external_id: Identity-provider subject (unique when present)
        login_key: Human login name / client code (unique, case-insensitive)
        email, name, phone: Contact fields
        role: Organisational role (see UserRole for seniority)
        status: active / inactive
        user_type: internal staff or external client
        parent_id: Manager of this user; NULL for roots
        hierarchy_path: Materialized path, e.g. '/1/7/42'
        hierarchy_level: Depth in the tree, 0 for roots
        branch_id, zone_id: Denormalised organisational grouping
        client_code, employee_code: Business identifiers
        created_at, updated_at, last_login_at: Timestamps

    Invariants (maintained by HierarchyStore, not by the database):
        - hierarchy_path == parent.hierarchy_path + '/' + str(id)
        - hierarchy_level == parent.hierarchy_level + 1 (0 for roots)
        - a parent's role strictly outranks the child's role
    """

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identification
    external_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Identity-provider subject id, linked on first login"
    )
    login_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Login name / client code, unique case-insensitively"
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Optional email address (stored lower-case)"
    )
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Authorization
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=UserRole.CLIENT.value,
        index=True,
        comment="Organisational role"
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=UserStatus.ACTIVE.value,
        index=True,
        comment="active / inactive - inactive users cannot authenticate"
    )
    user_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=UserType.CLIENT.value,
    )

    # Hierarchy
    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Direct manager; NULL for roots"
    )
    hierarchy_path: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
        default="",
        comment="Materialized path of ids from the root, e.g. /1/7/42"
    )
    hierarchy_level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Depth in the tree, 0 for roots"
    )

    # Organisational grouping
    branch_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    zone_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    client_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    employee_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful authentication timestamp"
    )

    __table_args__ = (
        Index(
            "uq_users_external_id",
            "external_id",
            unique=True,
            postgresql_where=text("external_id IS NOT NULL"),
            sqlite_where=text("external_id IS NOT NULL"),
        ),
        Index(
            "ix_users_hierarchy_path",
            "hierarchy_path",
            postgresql_ops={"hierarchy_path": "varchar_pattern_ops"},
        ),
        Index("ix_users_role_status", "role", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, login_key='{self.login_key}', role='{self.role}', "
            f"path='{self.hierarchy_path}')>"
        )

    @property
    def is_active(self) -> bool:
        """Check if the account may authenticate."""
        return self.status == UserStatus.ACTIVE.value


# Functional index: login keys are unique regardless of case.
Index("uq_users_login_key_lower", func.lower(User.login_key), unique=True)
