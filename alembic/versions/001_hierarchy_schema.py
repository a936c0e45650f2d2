"""Create users hierarchy and activity log tables.

Revision ID: 001_hierarchy_schema
Revises:
Create Date: 2026-10-19

- users: one row per portal user; parent_id is the tree edge and
  hierarchy_path / hierarchy_level are its materialized form
- activity_logs: append-only audit trail

Indexes:
- lower(login_key) unique: login keys match case-insensitively
- external_id unique where not null: unlinked users may share NULL
- hierarchy_path with varchar_pattern_ops: prefix (LIKE 'path/%') scans
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001_hierarchy_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("external_id", sa.String(128), nullable=True,
                  comment="Identity-provider subject id, linked on first login"),
        sa.Column("login_key", sa.String(100), nullable=False,
                  comment="Login name / client code, unique case-insensitively"),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="client"),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("user_type", sa.String(16), nullable=False, server_default="client"),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("hierarchy_path", sa.String(1024), nullable=False, server_default=""),
        sa.Column("hierarchy_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("zone_id", sa.Integer(), nullable=True),
        sa.Column("client_code", sa.String(64), nullable=True),
        sa.Column("employee_code", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["parent_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_index("uq_users_login_key_lower", "users", [sa.text("lower(login_key)")], unique=True)
    op.create_index(
        "uq_users_external_id",
        "users",
        ["external_id"],
        unique=True,
        postgresql_where=sa.text("external_id IS NOT NULL"),
    )
    op.create_index(
        "ix_users_hierarchy_path",
        "users",
        ["hierarchy_path"],
        postgresql_ops={"hierarchy_path": "varchar_pattern_ops"},
    )
    op.create_index("ix_users_parent_id", "users", ["parent_id"])
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_status", "users", ["status"])
    op.create_index("ix_users_branch_id", "users", ["branch_id"])
    op.create_index("ix_users_zone_id", "users", ["zone_id"])
    op.create_index("ix_users_role_status", "users", ["role", "status"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("detail", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_logs_actor_id", "activity_logs", ["actor_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
    op.create_index("ix_activity_logs_resource", "activity_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_index("ix_users_hierarchy_path", table_name="users")
    op.drop_index("uq_users_external_id", table_name="users")
    op.drop_index("uq_users_login_key_lower", table_name="users")
    op.drop_table("users")
