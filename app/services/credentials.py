"""
Credential Store - Users, API clients, and the secrets that authenticate them.

NO DICTIONARIES - All data uses typed models/dataclasses.

Passwords and client secrets are hashed with Argon2id. Hashing is explicit:
build_user() hashes and then constructs the row; nothing happens in ORM hooks.
"""

import asyncio
import secrets
from collections.abc import Callable
from datetime import datetime
from uuid import UUID, uuid4

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Client, User, first_of_next_month, utc_now
from app.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.api import ClientStatus, UserRole, UserStatus
from app.models.domain import RegistrationResult

logger = get_logger(__name__)

# Closed transition table. Revoked is terminal.
CLIENT_TRANSITIONS: dict[ClientStatus, frozenset[ClientStatus]] = {
    ClientStatus.PENDING: frozenset({ClientStatus.ACTIVE, ClientStatus.REVOKED}),
    ClientStatus.ACTIVE: frozenset({ClientStatus.SUSPENDED, ClientStatus.REVOKED}),
    ClientStatus.SUSPENDED: frozenset({ClientStatus.ACTIVE, ClientStatus.REVOKED}),
    ClientStatus.REVOKED: frozenset(),
}

_password_hasher = PasswordHasher()
_dummy_hash: str | None = None


def can_transition(current: ClientStatus, target: ClientStatus) -> bool:
    """True if a client may move from `current` to `target`."""
    return target in CLIENT_TRANSITIONS[current]


def generate_client_secret() -> str:
    """256 bits of randomness as 64 hex characters."""
    return secrets.token_hex(32)


class CredentialStore:
    """Persistence and verification of users and clients."""

    def __init__(
        self,
        db: AsyncSession,
        password_hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.password_hasher = password_hasher or _password_hasher
        self.clock = clock

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    async def hash_secret(self, plaintext: str) -> str:
        """Argon2id hash, computed off the event loop."""
        return await asyncio.to_thread(self.password_hasher.hash, plaintext)

    async def verify_secret(self, stored_hash: str, plaintext: str) -> bool:
        """Constant-time verification. Any mismatch or corrupt hash is False."""
        try:
            return await asyncio.to_thread(self.password_hasher.verify, stored_hash, plaintext)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    async def _burn_verification(self, plaintext: str) -> None:
        """Spend the same work as a real verify so unknown accounts are not faster."""
        global _dummy_hash
        if _dummy_hash is None:
            _dummy_hash = await self.hash_secret(secrets.token_hex(16))
        await self.verify_secret(_dummy_hash, plaintext)

    def check_password_strength(self, password: str) -> None:
        if len(password) < settings.password_min_length:
            raise ValidationError(
                f"Password must be at least {settings.password_min_length} characters long"
            )

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    async def build_user(
        self,
        client_name: str,
        email: str,
        password: str,
        description: str | None = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Hash the password, then construct an unsaved active User."""
        self.check_password_strength(password)
        password_hash = await self.hash_secret(password)
        return User(
            id=uuid4(),
            client_name=client_name,
            email=email.strip().lower(),
            description=description,
            password_hash=password_hash,
            status=UserStatus.ACTIVE.value,
            role=role.value,
            two_factor_enabled=False,
            two_factor_secret=None,
        )

    async def build_client(
        self, user_id: UUID, description: str | None = None
    ) -> tuple[Client, str]:
        """
        Construct an unsaved pending Client.

        Returns:
            tuple: (client, plaintext_secret) - the secret is not recoverable later
        """
        secret = generate_client_secret()
        client = Client(
            id=uuid4(),
            user_id=user_id,
            client_id=str(uuid4()),
            client_secret_hash=await self.hash_secret(secret),
            description=description,
            status=ClientStatus.PENDING.value,
            usage_quota=settings.default_usage_quota,
            usage_count=0,
            reset_date=first_of_next_month(self.clock()),
        )
        return client, secret

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_user(self, user_id: UUID) -> User | None:
        stmt = select(User).where(User.id == user_id, User.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower(), User.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def email_taken(self, email: str) -> bool:
        """Includes soft-deleted users; their email stays reserved."""
        stmt = select(User.id).where(User.email == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_client(self, client_id: str) -> Client | None:
        stmt = select(Client).where(Client.client_id == client_id, Client.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_client(self, client_id: str) -> Client:
        client = await self.get_client(client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    async def list_clients_for_user(self, user_id: UUID) -> list[Client]:
        stmt = (
            select(Client)
            .where(Client.user_id == user_id, Client.deleted_at.is_(None))
            .order_by(Client.created_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_clients(self, status: ClientStatus | None = None) -> list[Client]:
        stmt = select(Client).where(Client.deleted_at.is_(None))
        if status is not None:
            stmt = stmt.where(Client.status == status.value)
        result = await self.db.execute(stmt.order_by(Client.created_at.desc()))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Registration & authentication
    # ------------------------------------------------------------------

    async def register(
        self,
        client_name: str,
        email: str,
        password: str,
        description: str | None = None,
    ) -> RegistrationResult:
        """Create an active user and its first, pending, client."""
        if await self.email_taken(email):
            logger.info("registration_rejected_duplicate_email")
            raise ConflictError("User with this email already exists")

        user = await self.build_user(client_name, email, password, description)
        client, secret = await self.build_client(user.id, description)

        self.db.add(user)
        self.db.add(client)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            # Lost a race with a concurrent registration of the same email
            raise ConflictError("User with this email already exists") from e

        logger.info("user_registered", user_id=str(user.id), client_id=client.client_id)

        return RegistrationResult(
            user_id=user.id,
            email=user.email,
            client_name=user.client_name,
            client_id=client.client_id,
            client_secret=secret,
            client_status=ClientStatus.PENDING,
        )

    async def authenticate_password(self, email: str, password: str) -> User:
        """
        Verify email + password.

        Raises:
            InvalidCredentialsError: unknown email, wrong password, or inactive user
        """
        user = await self.get_user_by_email(email)
        if user is None:
            await self._burn_verification(password)
            logger.info("login_failed", reason="unknown_email")
            raise InvalidCredentialsError()

        if not await self.verify_secret(user.password_hash, password):
            logger.info("login_failed", reason="wrong_password", user_id=str(user.id))
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.info("login_failed", reason="user_not_active", user_id=str(user.id))
            raise InvalidCredentialsError()

        return user

    async def authenticate_client(self, client_id: str, client_secret: str) -> tuple[User, Client]:
        """
        Verify clientId + clientSecret. Client status is left to the caller.

        Raises:
            InvalidCredentialsError: unknown client, wrong secret, or inactive owner
        """
        client = await self.get_client(client_id)
        if client is None:
            await self._burn_verification(client_secret)
            logger.info("client_auth_failed", reason="unknown_client")
            raise InvalidCredentialsError()

        if not await self.verify_secret(client.client_secret_hash, client_secret):
            logger.info("client_auth_failed", reason="wrong_secret", client_id=client_id)
            raise InvalidCredentialsError()

        user = await self.get_user(client.user_id)
        if user is None or not user.is_active:
            logger.info("client_auth_failed", reason="owner_not_active", client_id=client_id)
            raise InvalidCredentialsError()

        return user, client

    async def provision_pending_client(self, user: User) -> Client:
        """Give a user with no clients a fresh pending one."""
        client, _ = await self.build_client(user.id, "Auto-created on login")
        self.db.add(client)
        await self.db.commit()
        logger.info(
            "pending_client_provisioned", user_id=str(user.id), client_id=client.client_id
        )
        return client

    async def record_login(self, user: User, client: Client) -> None:
        now = self.clock()
        user.last_login_at = now
        client.last_used_at = now
        await self.db.commit()

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """
        Raises:
            InvalidCredentialsError: current password does not verify
            ValidationError: new password too short
        """
        if not await self.verify_secret(user.password_hash, current_password):
            logger.info("password_change_rejected", user_id=str(user.id))
            raise InvalidCredentialsError()
        self.check_password_strength(new_password)
        user.password_hash = await self.hash_secret(new_password)
        await self.db.commit()
        logger.info("password_changed", user_id=str(user.id))

    async def rotate_client_secret(self, client: Client) -> str:
        """Replace the client secret, returning the new plaintext once."""
        secret = generate_client_secret()
        client.client_secret_hash = await self.hash_secret(secret)
        await self.db.commit()
        logger.info("client_secret_rotated", client_id=client.client_id)
        return secret

    # ------------------------------------------------------------------
    # Client lifecycle
    # ------------------------------------------------------------------

    async def transition_client(
        self,
        client_id: str,
        target: ClientStatus,
        actor: str,
        reason: str | None = None,
        from_status: ClientStatus | None = None,
    ) -> Client:
        """
        Move a client along the transition table and apply side effects.

        from_status narrows the move to a single source status, so approve
        only acts on pending clients and reinstate only on suspended ones.

        Approval stamps approved_by/approved_at. Reinstatement reactivates the
        owning user. Suspension and revocation deactivate the owning user and
        mark it for deletion.

        Raises:
            NotFoundError: unknown client
            InvalidStatusTransitionError: transition not allowed
        """
        client = await self.require_client(client_id)
        current = ClientStatus(client.status)
        if not can_transition(current, target) or (
            from_status is not None and current != from_status
        ):
            raise InvalidStatusTransitionError(client_id, current.value, target.value)

        now = self.clock()
        client.status = target.value

        if target == ClientStatus.ACTIVE and current == ClientStatus.PENDING:
            client.approved_by = actor
            client.approved_at = now

        if target == ClientStatus.ACTIVE and current == ClientStatus.SUSPENDED:
            await self.db.execute(
                update(User)
                .where(User.id == client.user_id, User.deleted_at.is_(None))
                .values(status=UserStatus.ACTIVE.value, marked_for_deletion_at=None)
            )

        if target in (ClientStatus.SUSPENDED, ClientStatus.REVOKED):
            await self.db.execute(
                update(User)
                .where(User.id == client.user_id)
                .values(
                    status=UserStatus.INACTIVE.value,
                    marked_for_deletion_at=now,
                    deletion_reason=reason,
                )
            )

        await self.db.commit()

        logger.info(
            "client_status_changed",
            client_id=client_id,
            from_status=current.value,
            to_status=target.value,
            actor=actor,
            reason=reason,
        )
        return client

    async def update_quota(self, client_id: str, usage_quota: int) -> Client:
        if usage_quota < 0:
            raise ValidationError("usageQuota must be non-negative")
        client = await self.require_client(client_id)
        client.usage_quota = usage_quota
        await self.db.commit()
        logger.info("client_quota_updated", client_id=client_id, usage_quota=usage_quota)
        return client

    async def reset_usage(self, client_id: str) -> Client:
        client = await self.require_client(client_id)
        client.usage_count = 0
        client.reset_date = first_of_next_month(self.clock())
        await self.db.commit()
        logger.info("client_usage_reset", client_id=client_id)
        return client

    async def reset_due_quotas(self) -> int:
        """Zero usage for every active client whose reset date has passed."""
        now = self.clock()
        stmt = (
            update(Client)
            .where(
                Client.status == ClientStatus.ACTIVE.value,
                Client.reset_date <= now,
                Client.deleted_at.is_(None),
            )
            .values(usage_count=0, reset_date=first_of_next_month(now))
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        count = result.rowcount or 0  # type: ignore[attr-defined]
        logger.info("client_quotas_reset", count=count)
        return count

    async def soft_delete_user(self, user_id: UUID, reason: str | None = None) -> User:
        """Hide the user and its clients from every lookup."""
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        now = self.clock()
        user.deleted_at = now
        user.status = UserStatus.INACTIVE.value
        user.deletion_reason = reason
        await self.db.execute(
            update(Client)
            .where(Client.user_id == user_id, Client.deleted_at.is_(None))
            .values(deleted_at=now)
        )
        await self.db.commit()
        logger.info("user_soft_deleted", user_id=str(user_id), reason=reason)
        return user
