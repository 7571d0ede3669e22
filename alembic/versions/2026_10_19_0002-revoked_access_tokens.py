"""Move the access-token deny list out of the tokens table.

Revision ID: 2026_10_19_0002
Revises: 2026_10_19_0001
Create Date: 2026-10-19

Revoked access tokens get their own table so the sweep can delete every
revoked or expired row from tokens without reviving a logged-out access
token. Existing deny rows are copied across before tokens is narrowed to
refresh and API tokens.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0002"
down_revision: str | None = "2026_10_19_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "revoked_access_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column(
            "revoked_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_revoked_access_tokens_expires_at", "revoked_access_tokens", ["token_expires_at"]
    )
    op.create_index("idx_revoked_access_tokens_user_id", "revoked_access_tokens", ["user_id"])

    op.execute(
        """
        INSERT INTO revoked_access_tokens (token_hash, user_id, client_id, revoked_at,
                                           token_expires_at)
        SELECT token_hash, user_id, client_id, created_at, expires_at
        FROM tokens
        WHERE token_type = 'access' AND expires_at > now()
        """
    )
    op.execute("DELETE FROM tokens WHERE token_type = 'access'")

    op.drop_constraint("ck_tokens_type_valid", "tokens", type_="check")
    op.create_check_constraint("ck_tokens_type_valid", "tokens", "token_type IN ('refresh', 'api')")


def downgrade() -> None:
    op.drop_constraint("ck_tokens_type_valid", "tokens", type_="check")
    op.create_check_constraint(
        "ck_tokens_type_valid", "tokens", "token_type IN ('access', 'refresh', 'api')"
    )
    op.execute(
        """
        INSERT INTO tokens (id, token_hash, token_type, user_id, client_id, expires_at,
                            is_revoked, created_at)
        SELECT gen_random_uuid(), token_hash, 'access', user_id, client_id,
               token_expires_at, true, revoked_at
        FROM revoked_access_tokens
        """
    )
    op.drop_index("idx_revoked_access_tokens_user_id", table_name="revoked_access_tokens")
    op.drop_index("idx_revoked_access_tokens_expires_at", table_name="revoked_access_tokens")
    op.drop_table("revoked_access_tokens")
