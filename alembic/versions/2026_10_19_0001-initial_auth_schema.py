"""Initial schema: users, clients, tokens, backup_codes.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Create the credential and session tables."""
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("two_factor_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("two_factor_secret", sa.String(64), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("marked_for_deletion_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deletion_reason", sa.Text, nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'suspended')", name="ck_users_status_valid"
        ),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role_valid"),
        sa.CheckConstraint(
            "(two_factor_enabled AND two_factor_secret IS NOT NULL)"
            " OR (NOT two_factor_enabled AND two_factor_secret IS NULL)",
            name="ck_users_two_factor_secret_matches_flag",
        ),
    )
    op.create_index("idx_users_status", "users", ["status"])
    op.create_index("idx_users_deleted_at", "users", ["deleted_at"])

    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(64), nullable=False, unique=True),
        sa.Column("client_secret_hash", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_quota", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'suspended', 'revoked')",
            name="ck_clients_status_valid",
        ),
        sa.CheckConstraint("usage_quota >= 0", name="ck_clients_quota_non_negative"),
        sa.CheckConstraint("usage_count >= 0", name="ck_clients_usage_non_negative"),
    )
    op.create_index("idx_clients_user_id", "clients", ["user_id"])
    op.create_index("idx_clients_status", "clients", ["status"])
    op.create_index("idx_clients_reset_date", "clients", ["reset_date"])

    op.create_table(
        "tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("token_type", sa.String(20), nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "token_type IN ('access', 'refresh', 'api')", name="ck_tokens_type_valid"
        ),
    )
    op.create_index("idx_tokens_user_id", "tokens", ["user_id"])
    op.create_index("idx_tokens_client_id", "tokens", ["client_id"])
    op.create_index("idx_tokens_expires_at", "tokens", ["expires_at"])

    op.create_table(
        "backup_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("used", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_backup_codes_user_hash", "backup_codes", ["user_id", "code_hash"])


def downgrade() -> None:
    """Drop every table created above."""
    op.drop_index("idx_backup_codes_user_hash", table_name="backup_codes")
    op.drop_table("backup_codes")
    op.drop_index("idx_tokens_expires_at", table_name="tokens")
    op.drop_index("idx_tokens_client_id", table_name="tokens")
    op.drop_index("idx_tokens_user_id", table_name="tokens")
    op.drop_table("tokens")
    op.drop_index("idx_clients_reset_date", table_name="clients")
    op.drop_index("idx_clients_status", table_name="clients")
    op.drop_index("idx_clients_user_id", table_name="clients")
    op.drop_table("clients")
    op.drop_index("idx_users_deleted_at", table_name="users")
    op.drop_index("idx_users_status", table_name="users")
    op.drop_table("users")
