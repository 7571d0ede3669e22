"""
Tests for Credential Store.

Hashing, registration, authentication and the client status table.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from argon2 import PasswordHasher
from sqlalchemy.exc import IntegrityError

from app.db.models import Client, User, first_of_next_month
from app.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.api import ClientStatus, UserStatus
from app.services.credentials import (
    CLIENT_TRANSITIONS,
    CredentialStore,
    can_transition,
    generate_client_secret,
)
from tests.conftest import (
    FakeClock,
    create_mock_client,
    create_mock_user,
    make_result,
    queue_results,
)


class TestTransitionTable:
    """Closed client status table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ClientStatus.PENDING, ClientStatus.ACTIVE),
            (ClientStatus.PENDING, ClientStatus.REVOKED),
            (ClientStatus.ACTIVE, ClientStatus.SUSPENDED),
            (ClientStatus.ACTIVE, ClientStatus.REVOKED),
            (ClientStatus.SUSPENDED, ClientStatus.ACTIVE),
            (ClientStatus.SUSPENDED, ClientStatus.REVOKED),
        ],
    )
    def test_allowed(self, current: ClientStatus, target: ClientStatus):
        assert can_transition(current, target) is True

    @pytest.mark.parametrize("target", list(ClientStatus))
    def test_revoked_is_terminal(self, target: ClientStatus):
        """Nothing leaves revoked."""
        assert can_transition(ClientStatus.REVOKED, target) is False

    def test_pending_cannot_be_suspended(self):
        assert can_transition(ClientStatus.PENDING, ClientStatus.SUSPENDED) is False

    def test_every_status_has_an_entry(self):
        assert set(CLIENT_TRANSITIONS) == set(ClientStatus)


class TestHashing:
    """Argon2id hashing."""

    def test_client_secret_is_64_hex(self):
        secret = generate_client_secret()
        assert len(secret) == 64
        int(secret, 16)

    @pytest.mark.asyncio
    async def test_hash_and_verify(self, credential_store: CredentialStore):
        """A hash verifies its own plaintext and nothing else."""
        hashed = await credential_store.hash_secret("correct horse")
        assert hashed.startswith("$argon2id$")
        assert await credential_store.verify_secret(hashed, "correct horse") is True
        assert await credential_store.verify_secret(hashed, "wrong horse") is False

    @pytest.mark.asyncio
    async def test_corrupt_hash_is_false(self, credential_store: CredentialStore):
        """A corrupt stored hash never raises."""
        assert await credential_store.verify_secret("not-a-hash", "anything") is False

    def test_password_too_short(self, credential_store: CredentialStore):
        with pytest.raises(ValidationError, match="at least 8"):
            credential_store.check_password_strength("short")


class TestBuilders:
    """Explicit construction of rows."""

    @pytest.mark.asyncio
    async def test_build_user_hashes_password(self, credential_store: CredentialStore):
        user = await credential_store.build_user("Acme", " User@Example.COM ", "s3cret-pass")

        assert isinstance(user, User)
        assert user.email == "user@example.com"
        assert user.password_hash != "s3cret-pass"
        assert await credential_store.verify_secret(user.password_hash, "s3cret-pass")
        assert user.status == UserStatus.ACTIVE.value
        assert user.two_factor_enabled is False
        assert user.two_factor_secret is None

    @pytest.mark.asyncio
    async def test_build_client_starts_pending(
        self, credential_store: CredentialStore, clock: FakeClock
    ):
        """New clients are pending with a default quota and next-month reset."""
        owner = create_mock_user()
        client, secret = await credential_store.build_client(owner.id, "Integration")

        assert isinstance(client, Client)
        assert client.status == ClientStatus.PENDING.value
        assert client.usage_quota == 1000
        assert client.usage_count == 0
        assert client.reset_date == datetime(2026, 11, 1, tzinfo=UTC)
        assert await credential_store.verify_secret(client.client_secret_hash, secret)


class TestFirstOfNextMonth:
    def test_mid_year(self):
        assert first_of_next_month(datetime(2026, 5, 17, tzinfo=UTC)) == datetime(
            2026, 6, 1, tzinfo=UTC
        )

    def test_december_rolls_year(self):
        assert first_of_next_month(datetime(2026, 12, 31, 23, 59, tzinfo=UTC)) == datetime(
            2027, 1, 1, tzinfo=UTC
        )


class TestRegister:
    """User plus pending client in one commit."""

    @pytest.mark.asyncio
    async def test_register_success(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        result = await credential_store.register(
            "Acme Analytics", "new@example.com", "long-enough-password"
        )

        assert result.client_status == ClientStatus.PENDING
        assert len(result.client_secret) == 64
        assert result.email == "new@example.com"
        assert db_session.add.call_count == 2
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_register_duplicate_email(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        """An existing email, deleted or not, is a conflict."""
        db_session.execute = AsyncMock(return_value=make_result(scalar=create_mock_user().id))

        with pytest.raises(ConflictError):
            await credential_store.register("Acme", "user@example.com", "long-enough-password")

        db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_race_becomes_conflict(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        """A unique violation at commit is reported as a conflict."""
        db_session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))

        with pytest.raises(ConflictError):
            await credential_store.register("Acme", "race@example.com", "long-enough-password")

        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_register_short_password(self, credential_store: CredentialStore):
        with pytest.raises(ValidationError):
            await credential_store.register("Acme", "new@example.com", "short")


class TestAuthenticate:
    """Password and client-credential checks."""

    @pytest.mark.asyncio
    async def test_password_success(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        user = create_mock_user(password_hash=fast_hasher.hash("right-password"))
        db_session.execute = AsyncMock(return_value=make_result(scalar=user))

        assert await credential_store.authenticate_password(user.email, "right-password") is user

    @pytest.mark.asyncio
    async def test_wrong_password(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        user = create_mock_user(password_hash=fast_hasher.hash("right-password"))
        db_session.execute = AsyncMock(return_value=make_result(scalar=user))

        with pytest.raises(InvalidCredentialsError):
            await credential_store.authenticate_password(user.email, "wrong-password")

    @pytest.mark.asyncio
    async def test_unknown_email_same_error(self, credential_store: CredentialStore):
        """Unknown email is indistinguishable from a wrong password."""
        with pytest.raises(InvalidCredentialsError) as exc_info:
            await credential_store.authenticate_password("ghost@example.com", "whatever")
        assert exc_info.value.message == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        user = create_mock_user(
            status=UserStatus.INACTIVE, password_hash=fast_hasher.hash("right-password")
        )
        db_session.execute = AsyncMock(return_value=make_result(scalar=user))

        with pytest.raises(InvalidCredentialsError):
            await credential_store.authenticate_password(user.email, "right-password")

    @pytest.mark.asyncio
    async def test_no_lockout_after_failures(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        """Repeated failures do not block a later correct login."""
        user = create_mock_user(password_hash=fast_hasher.hash("right-password"))
        db_session.execute = AsyncMock(return_value=make_result(scalar=user))

        for _ in range(10):
            with pytest.raises(InvalidCredentialsError):
                await credential_store.authenticate_password(user.email, "wrong")

        assert await credential_store.authenticate_password(user.email, "right-password") is user

    @pytest.mark.asyncio
    async def test_client_credentials(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        """Status is not checked here; the caller decides."""
        user = create_mock_user()
        client = create_mock_client(
            user_id=user.id,
            status=ClientStatus.PENDING,
            client_secret_hash=fast_hasher.hash("s" * 64),
        )
        queue_results(db_session, make_result(scalar=client), make_result(scalar=user))

        assert await credential_store.authenticate_client(client.client_id, "s" * 64) == (
            user,
            client,
        )

    @pytest.mark.asyncio
    async def test_client_wrong_secret(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        client = create_mock_client(client_secret_hash=fast_hasher.hash("s" * 64))
        db_session.execute = AsyncMock(return_value=make_result(scalar=client))

        with pytest.raises(InvalidCredentialsError):
            await credential_store.authenticate_client(client.client_id, "t" * 64)


class TestPasswordChange:
    @pytest.mark.asyncio
    async def test_change_password(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        fast_hasher: PasswordHasher,
    ):
        user = create_mock_user(password_hash=fast_hasher.hash("old-password"))

        await credential_store.change_password(user, "old-password", "new-password")

        assert await credential_store.verify_secret(user.password_hash, "new-password")
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wrong_current_password(
        self, credential_store: CredentialStore, fast_hasher: PasswordHasher
    ):
        user = create_mock_user(password_hash=fast_hasher.hash("old-password"))
        with pytest.raises(InvalidCredentialsError):
            await credential_store.change_password(user, "nope", "new-password")


class TestTransitionClient:
    """Status changes and their side effects."""

    @pytest.mark.asyncio
    async def test_approve_stamps_approver(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        clock: FakeClock,
    ):
        client = create_mock_client(status=ClientStatus.PENDING)
        db_session.execute = AsyncMock(return_value=make_result(scalar=client))

        await credential_store.transition_client(
            client.client_id, ClientStatus.ACTIVE, "admin@example.com"
        )

        assert client.status == "active"
        assert client.approved_by == "admin@example.com"
        assert client.approved_at == clock()

    @pytest.mark.asyncio
    async def test_suspend_deactivates_owner(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        """Suspension issues an UPDATE on the owning user."""
        client = create_mock_client(status=ClientStatus.ACTIVE)
        queue_results(db_session, make_result(scalar=client), make_result(rowcount=1))

        await credential_store.transition_client(
            client.client_id, ClientStatus.SUSPENDED, "admin@example.com", "abuse"
        )

        assert client.status == "suspended"
        assert db_session.execute.await_count == 2
        update_stmt = db_session.execute.await_args_list[1][0][0]
        assert update_stmt.table.name == "users"

    @pytest.mark.asyncio
    async def test_revoked_cannot_be_reactivated(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        client = create_mock_client(status=ClientStatus.REVOKED)
        db_session.execute = AsyncMock(return_value=make_result(scalar=client))

        with pytest.raises(InvalidStatusTransitionError):
            await credential_store.transition_client(
                client.client_id, ClientStatus.ACTIVE, "admin@example.com"
            )
        assert client.status == "revoked"
        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_from_status_guard(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        """Approve must not act on a suspended client."""
        client = create_mock_client(status=ClientStatus.SUSPENDED)
        db_session.execute = AsyncMock(return_value=make_result(scalar=client))

        with pytest.raises(InvalidStatusTransitionError):
            await credential_store.transition_client(
                client.client_id,
                ClientStatus.ACTIVE,
                "admin@example.com",
                from_status=ClientStatus.PENDING,
            )

    @pytest.mark.asyncio
    async def test_unknown_client(self, credential_store: CredentialStore):
        with pytest.raises(NotFoundError):
            await credential_store.transition_client("nope", ClientStatus.ACTIVE, "a")


class TestQuotas:
    @pytest.mark.asyncio
    async def test_reset_due_quotas(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        db_session.execute = AsyncMock(return_value=make_result(rowcount=12))
        assert await credential_store.reset_due_quotas() == 12
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reset_usage(
        self, credential_store: CredentialStore, db_session: AsyncMock
    ):
        client: MagicMock = create_mock_client(usage_count=900)
        db_session.execute = AsyncMock(return_value=make_result(scalar=client))

        await credential_store.reset_usage(client.client_id)

        assert client.usage_count == 0
        assert client.reset_date == datetime(2026, 11, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_negative_quota(self, credential_store: CredentialStore):
        with pytest.raises(ValidationError):
            await credential_store.update_quota("c", -1)


class TestSoftDelete:
    @pytest.mark.asyncio
    async def test_soft_delete(
        self,
        credential_store: CredentialStore,
        db_session: AsyncMock,
        clock: FakeClock,
    ):
        user = create_mock_user()
        queue_results(db_session, make_result(scalar=user), make_result(rowcount=2))

        await credential_store.soft_delete_user(user.id, "requested")

        assert user.deleted_at == clock()
        assert user.status == "inactive"
        assert user.deletion_reason == "requested"

    @pytest.mark.asyncio
    async def test_soft_delete_unknown(self, credential_store: CredentialStore):
        with pytest.raises(NotFoundError):
            await credential_store.soft_delete_user(create_mock_user().id)
