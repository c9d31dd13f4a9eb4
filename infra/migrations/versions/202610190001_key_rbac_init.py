"""key rbac initial tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def _create_entity_table(table: str) -> None:
    op.create_table(
        table,
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "name", name=f"uq_{table}_workspace_name"),
        sa.UniqueConstraint("workspace_id", "id", name=f"uq_{table}_workspace_id_id"),
    )
    op.create_index(f"ix_{table}_workspace_id", table, ["workspace_id"])
    op.create_index(f"ix_{table}_name", table, ["name"])
    op.create_index(f"ix_{table}_created_at", table, ["created_at"])


def _create_binding_table(table: str, entity_table: str, entity_column: str) -> None:
    op.create_table(
        table,
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("key_id", sa.String(), nullable=False),
        sa.Column(entity_column, sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["workspace_id", "key_id"],
            ["keys.workspace_id", "keys.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["workspace_id", entity_column],
            [f"{entity_table}.workspace_id", f"{entity_table}.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("workspace_id", "key_id", entity_column),
    )
    op.create_index(f"ix_{table}_workspace_key", table, ["workspace_id", "key_id"])
    op.create_index(f"ix_{table}_created_at", table, ["created_at"])


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workspaces_name", "workspaces", ["name"], unique=True)
    op.create_index("ix_workspaces_created_at", "workspaces", ["created_at"])

    op.create_table(
        "apis",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "id", name="uq_apis_workspace_id_id"),
    )
    op.create_index("ix_apis_workspace_id", "apis", ["workspace_id"])
    op.create_index("ix_apis_created_at", "apis", ["created_at"])

    op.create_table(
        "keys",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("api_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("hash", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["workspace_id", "api_id"],
            ["apis.workspace_id", "apis.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "id", name="uq_keys_workspace_id_id"),
    )
    op.create_index("ix_keys_workspace_id", "keys", ["workspace_id"])
    op.create_index("ix_keys_api_id", "keys", ["api_id"])
    op.create_index("ix_keys_hash", "keys", ["hash"], unique=True)
    op.create_index("ix_keys_created_at", "keys", ["created_at"])
    op.create_index("ix_keys_deleted_at", "keys", ["deleted_at"])

    _create_entity_table("permissions")
    _create_entity_table("roles")
    _create_binding_table("key_permissions", "permissions", "permission_id")
    _create_binding_table("key_roles", "roles", "role_id")

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resources", sa.JSON(), nullable=False),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_workspace_id", "audit_logs", ["workspace_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])
    op.create_index("ix_audit_logs_workspace_event", "audit_logs", ["workspace_id", "event"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_workspace_event", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_workspace_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    for table in ("key_roles", "key_permissions"):
        op.drop_index(f"ix_{table}_created_at", table_name=table)
        op.drop_index(f"ix_{table}_workspace_key", table_name=table)
        op.drop_table(table)

    for table in ("roles", "permissions"):
        op.drop_index(f"ix_{table}_created_at", table_name=table)
        op.drop_index(f"ix_{table}_name", table_name=table)
        op.drop_index(f"ix_{table}_workspace_id", table_name=table)
        op.drop_table(table)

    op.drop_index("ix_keys_deleted_at", table_name="keys")
    op.drop_index("ix_keys_created_at", table_name="keys")
    op.drop_index("ix_keys_hash", table_name="keys")
    op.drop_index("ix_keys_api_id", table_name="keys")
    op.drop_index("ix_keys_workspace_id", table_name="keys")
    op.drop_table("keys")

    op.drop_index("ix_apis_created_at", table_name="apis")
    op.drop_index("ix_apis_workspace_id", table_name="apis")
    op.drop_table("apis")

    op.drop_index("ix_workspaces_created_at", table_name="workspaces")
    op.drop_index("ix_workspaces_name", table_name="workspaces")
    op.drop_table("workspaces")
