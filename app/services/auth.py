"""
Auth Service - Orchestrates registration, login, 2FA and session operations.

Collaborators are passed in, never looked up globally, so tests can swap any
of them for a mock.
"""

from uuid import UUID

from structlog import get_logger

from app.db.models import Client, User
from app.exceptions import (
    AuthorizationError,
    InvalidCredentialsError,
    NotFoundError,
    PendingApprovalError,
)
from app.models.api import ClientStatus, TokenType, UserRole
from app.models.domain import (
    AuthContext,
    ClientCredentials,
    IssuedToken,
    LoginResult,
    RegistrationResult,
    TwoFactorSetup,
)
from app.observability.metrics import metrics
from app.services.credentials import CredentialStore
from app.services.tokens import TokenService
from app.services.two_factor import TwoFactorService

logger = get_logger(__name__)


class AuthService:
    """Login state machine and the account operations around it."""

    def __init__(
        self,
        credentials: CredentialStore,
        tokens: TokenService,
        two_factor: TwoFactorService,
    ):
        self.credentials = credentials
        self.tokens = tokens
        self.two_factor = two_factor

    async def register(
        self,
        client_name: str,
        email: str,
        password: str,
        description: str | None = None,
    ) -> RegistrationResult:
        result = await self.credentials.register(client_name, email, password, description)
        metrics.registrations_total.inc()
        return result

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @staticmethod
    def _require_active_client(client: Client) -> None:
        """Pending gets 403. Suspended or revoked look like bad credentials."""
        if client.status == ClientStatus.ACTIVE.value:
            return
        if client.status == ClientStatus.PENDING.value:
            raise PendingApprovalError(client.client_id)
        logger.info("login_failed", reason=f"client_{client.status}", client_id=client.client_id)
        raise InvalidCredentialsError()

    async def _select_client_for_user(self, user: User) -> Client:
        clients = await self.credentials.list_clients_for_user(user.id)
        for client in clients:
            if client.status == ClientStatus.ACTIVE.value:
                return client
        for client in clients:
            if client.status == ClientStatus.PENDING.value:
                raise PendingApprovalError(client.client_id)
        if not clients:
            pending = await self.credentials.provision_pending_client(user)
            raise PendingApprovalError(pending.client_id)
        logger.info("login_failed", reason="no_usable_client", user_id=str(user.id))
        raise InvalidCredentialsError()

    async def _complete_login(self, user: User, client: Client) -> LoginResult:
        access = self.tokens.issue_access_token(user, client)
        refresh = await self.tokens.issue_refresh_token(user, client)
        await self.credentials.record_login(user, client)
        logger.info("login_succeeded", user_id=str(user.id), client_id=client.client_id)
        return LoginResult(
            user_id=user.id,
            email=user.email,
            client_id=client.client_id,
            role=UserRole(user.role),
            two_factor_enabled=user.two_factor_enabled,
            require_two_factor=False,
            access_token=access,
            refresh_token=refresh,
        )

    async def login(
        self,
        email: str | None = None,
        password: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> LoginResult:
        """
        Authenticate by email+password or by client credentials.

        Raises:
            InvalidCredentialsError: anything that must not be distinguishable
            PendingApprovalError: credentials correct, client not yet approved
        """
        method = "password" if email and password else "client_credentials"
        try:
            if email and password:
                user = await self.credentials.authenticate_password(email, password)
                client = await self._select_client_for_user(user)
            elif client_id and client_secret:
                user, client = await self.credentials.authenticate_client(client_id, client_secret)
                self._require_active_client(client)
            else:
                raise InvalidCredentialsError()
        except InvalidCredentialsError:
            metrics.record_login(method, "invalid_credentials")
            raise
        except PendingApprovalError:
            metrics.record_login(method, "pending_approval")
            raise

        if user.two_factor_enabled:
            metrics.record_login(method, "two_factor_required")
            logger.info("login_two_factor_required", user_id=str(user.id))
            return LoginResult(
                user_id=user.id,
                email=user.email,
                client_id=client.client_id,
                role=UserRole(user.role),
                two_factor_enabled=True,
                require_two_factor=True,
            )

        metrics.record_login(method, "success")
        return await self._complete_login(user, client)

    async def verify_two_factor(
        self,
        user_id: UUID,
        code: str | None = None,
        backup_code: str | None = None,
        client_id: str | None = None,
    ) -> LoginResult:
        """
        Second login step; issues tokens exactly like a plain login.

        client_id is the one returned by the first step. Without it the
        user's first active client is used, as for an email login.
        """
        user = await self.two_factor.verify_login(user_id, code=code, backup_code=backup_code)
        if not user.is_active:
            raise InvalidCredentialsError()
        if client_id is None:
            client = await self._select_client_for_user(user)
        else:
            found = await self.credentials.get_client(client_id)
            if found is None or found.user_id != user.id:
                raise InvalidCredentialsError()
            self._require_active_client(found)
            client = found
        return await self._complete_login(user, client)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> IssuedToken:
        return await self.tokens.refresh(refresh_token)

    async def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        await self.tokens.revoke(access_token)
        if refresh_token:
            await self.tokens.revoke(refresh_token)

    async def _require_user(self, user_id: UUID) -> User:
        user = await self.credentials.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def change_password(self, user_id: UUID, current_password: str, new_password: str) -> int:
        """Change the password and revoke every refresh token of the user."""
        user = await self._require_user(user_id)
        await self.credentials.change_password(user, current_password, new_password)
        return await self.tokens.revoke_all_for_user(user_id, (TokenType.REFRESH,))

    async def change_client_secret(
        self, caller: AuthContext, client_id: str, current_secret: str
    ) -> ClientCredentials:
        """Rotate a client secret and revoke every token issued to the client."""
        client = await self.credentials.require_client(client_id)
        if client.user_id != caller.user_id and not caller.is_admin:
            raise AuthorizationError("You do not own this client")
        if not await self.credentials.verify_secret(client.client_secret_hash, current_secret):
            raise InvalidCredentialsError()

        secret = await self.credentials.rotate_client_secret(client)
        await self.tokens.revoke_all_for_client(client_id)
        return ClientCredentials(client_id=client_id, client_secret=secret)

    async def generate_api_token(self, client_id: str, client_secret: str) -> IssuedToken:
        user, client = await self.credentials.authenticate_client(client_id, client_secret)
        self._require_active_client(client)
        return await self.tokens.issue_api_token(user, client)

    # ------------------------------------------------------------------
    # Two-factor enrolment
    # ------------------------------------------------------------------

    async def generate_two_factor(self, user_id: UUID) -> TwoFactorSetup:
        user = await self._require_user(user_id)
        return self.two_factor.generate_secret(user.email)

    async def enable_two_factor(self, user_id: UUID, secret: str, code: str) -> list[str]:
        return await self.two_factor.enable(user_id, secret, code)

    async def disable_two_factor(self, user_id: UUID, code: str | None = None) -> None:
        await self.two_factor.disable(user_id, code)
