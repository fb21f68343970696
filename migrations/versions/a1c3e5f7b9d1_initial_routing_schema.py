"""Initial schema: platform auth/audit tables, requests and their activity ledger.

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d1"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("rank", sa.String(32), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("org_role", sa.String(64), nullable=True),
        sa.Column("unit_uic", sa.String(32), nullable=True),
        sa.Column("installation_id", sa.String(64), nullable=True),
        sa.Column("hqmc_division", sa.String(64), nullable=True),
        sa.Column("is_app_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_unit_uic", "users", ["unit_uic"])
    op.create_index("idx_users_installation_id", "users", ["installation_id"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("http_request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subject", sa.String(255), nullable=False, server_default=""),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("uploaded_by_id", sa.String(64), nullable=False),
        sa.Column("unit_uic", sa.String(32), nullable=True),
        sa.Column("installation_id", sa.String(64), nullable=True),
        sa.Column("current_stage", sa.String(32), nullable=False, server_default="PLATOON_REVIEW"),
        sa.Column("route_section", sa.String(128), nullable=True),
        sa.Column("previous_section", sa.String(128), nullable=True),
        sa.Column("external_pending_unit_name", sa.String(255), nullable=True),
        sa.Column("external_pending_unit_uic", sa.String(32), nullable=True),
        sa.Column("external_pending_stage", sa.String(128), nullable=True),
        sa.Column("final_status", sa.String(32), nullable=True),
        sa.Column("ssic", sa.String(16), nullable=True),
        sa.Column("ssic_nomenclature", sa.String(255), nullable=True),
        sa.Column("ssic_bucket", sa.String(64), nullable=True),
        sa.Column("ssic_bucket_title", sa.String(255), nullable=True),
        sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("cutoff_trigger", sa.String(32), nullable=True),
        sa.Column("cutoff_description", sa.String(255), nullable=True),
        sa.Column("retention_value", sa.Integer(), nullable=True),
        sa.Column("retention_unit", sa.String(16), nullable=True),
        sa.Column("disposal_action", sa.String(32), nullable=True),
        sa.Column("dau", sa.String(64), nullable=True),
        sa.Column("filed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("idx_requests_owner", "requests", ["uploaded_by_id"])
    op.create_index("idx_requests_unit_uic", "requests", ["unit_uic"])
    op.create_index("idx_requests_installation_id", "requests", ["installation_id"])
    op.create_index("idx_requests_stage", "requests", ["current_stage"])

    op.create_table(
        "request_activity",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("actor_role", sa.String(64), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("action", sa.String(512), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("from_section", sa.String(128), nullable=True),
        sa.Column("to_section", sa.String(128), nullable=True),
        sa.Column("event_kind", sa.String(16), nullable=True),
        sa.Column("event_scope", sa.String(16), nullable=True),
        sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", "position", name="uq_request_activity_position"),
    )
    op.create_index("idx_request_activity_request", "request_activity", ["request_id"])


def downgrade() -> None:
    op.drop_index("idx_request_activity_request", table_name="request_activity")
    op.drop_table("request_activity")
    op.drop_index("idx_requests_stage", table_name="requests")
    op.drop_index("idx_requests_installation_id", table_name="requests")
    op.drop_index("idx_requests_unit_uic", table_name="requests")
    op.drop_index("idx_requests_owner", table_name="requests")
    op.drop_table("requests")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_index("idx_users_installation_id", table_name="users")
    op.drop_index("idx_users_unit_uic", table_name="users")
    op.drop_table("users")
