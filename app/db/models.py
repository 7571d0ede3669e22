"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Raw tokens, passwords and client secrets are never stored; only hashes.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.models.api import ClientStatus, UserRole, UserStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def first_of_next_month(now: datetime) -> datetime:
    """Midnight UTC on the first day of the month after `now`."""
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


class User(Base):
    """
    ORM model for users table.

    A human account. Soft-deleted rows keep their email reserved.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)

    # Two-factor authentication
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    two_factor_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Retention
    marked_for_deletion_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deletion_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    clients: Mapped[list["Client"]] = relationship(back_populates="user", lazy="noload")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'suspended')", name="ck_users_status_valid"
        ),
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role_valid"),
        CheckConstraint(
            "(two_factor_enabled AND two_factor_secret IS NOT NULL)"
            " OR (NOT two_factor_enabled AND two_factor_secret IS NULL)",
            name="ck_users_two_factor_secret_matches_flag",
        ),
        Index("idx_users_status", "status"),
        Index("idx_users_deleted_at", "deleted_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value and self.deleted_at is None

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"


class Client(Base):
    """
    ORM model for clients table.

    A machine credential owned by a user. New clients start pending and need
    admin approval before they can authenticate.
    """

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Public identifier and Argon2 hash of the secret
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_secret_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClientStatus.PENDING.value
    )
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Monthly usage quota
    usage_quota: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: first_of_next_month(utc_now())
    )

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    user: Mapped[User] = relationship(back_populates="clients", lazy="noload")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'suspended', 'revoked')",
            name="ck_clients_status_valid",
        ),
        CheckConstraint("usage_quota >= 0", name="ck_clients_quota_non_negative"),
        CheckConstraint("usage_count >= 0", name="ck_clients_usage_non_negative"),
        Index("idx_clients_user_id", "user_id"),
        Index("idx_clients_status", "status"),
        Index("idx_clients_reset_date", "reset_date"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Client(client_id={self.client_id}, user_id={self.user_id}, status={self.status})>"


class Token(Base):
    """
    ORM model for tokens table.

    Stored refresh and API tokens. Tokens are identified by a SHA-256 hash,
    never the raw value. Revoked access tokens live in revoked_access_tokens.
    """

    __tablename__ = "tokens"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    token_type: Mapped[str] = mapped_column(String(20), nullable=False)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("token_type IN ('refresh', 'api')", name="ck_tokens_type_valid"),
        Index("idx_tokens_user_id", "user_id"),
        Index("idx_tokens_client_id", "client_id"),
        Index("idx_tokens_expires_at", "expires_at"),
    )

    def is_usable(self, now: datetime) -> bool:
        """Usable iff not revoked and strictly before expiry."""
        return not self.is_revoked and now < self.expires_at

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Token(hash={self.token_hash[:16]}..., type={self.token_type}, "
            f"user_id={self.user_id}, revoked={self.is_revoked})>"
        )


class RevokedAccessToken(Base):
    """
    ORM model for revoked_access_tokens table.

    Deny list for logged-out access tokens. Access tokens are never stored
    at issue time, so revoking one records its SHA-256 hash here until the
    token's own expiry, after which the sweep purges the entry.
    """

    __tablename__ = "revoked_access_tokens"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_revoked_access_tokens_expires_at", "token_expires_at"),
        Index("idx_revoked_access_tokens_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<RevokedAccessToken(hash={self.token_hash[:16]}..., "
            f"user_id={self.user_id}, expires={self.token_expires_at})>"
        )


class BackupCode(Base):
    """
    ORM model for backup_codes table.

    Single-use 2FA recovery codes, stored as SHA-256 hashes.
    """

    __tablename__ = "backup_codes"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_backup_codes_user_hash", "user_id", "code_hash"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<BackupCode(user_id={self.user_id}, used={self.used})>"
