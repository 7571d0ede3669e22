"""
Client Administration - Approval lifecycle, quotas and account removal.

Status changes go through CredentialStore.transition_client; this layer adds
the token side effects. Only stored refresh and API tokens are revoked here.
Outstanding access tokens are refused at request time once the user or
client is no longer active.
"""

from uuid import UUID

from structlog import get_logger

from app.db.models import Client, User
from app.models.api import ClientStatus
from app.models.domain import CleanupResult
from app.services.credentials import CredentialStore
from app.services.tokens import TokenService

logger = get_logger(__name__)


class ClientAdminService:
    """Admin operations over clients and users."""

    def __init__(self, credentials: CredentialStore, tokens: TokenService):
        self.credentials = credentials
        self.tokens = tokens

    async def approve(self, client_id: str, admin_email: str) -> Client:
        return await self.credentials.transition_client(
            client_id, ClientStatus.ACTIVE, admin_email, from_status=ClientStatus.PENDING
        )

    async def reinstate(
        self, client_id: str, admin_email: str, reason: str | None = None
    ) -> Client:
        return await self.credentials.transition_client(
            client_id,
            ClientStatus.ACTIVE,
            admin_email,
            reason,
            from_status=ClientStatus.SUSPENDED,
        )

    async def suspend(self, client_id: str, admin_email: str, reason: str | None = None) -> Client:
        client = await self.credentials.transition_client(
            client_id, ClientStatus.SUSPENDED, admin_email, reason
        )
        await self.tokens.revoke_all_for_client(client_id)
        return client

    async def revoke(self, client_id: str, admin_email: str, reason: str | None = None) -> Client:
        client = await self.credentials.transition_client(
            client_id, ClientStatus.REVOKED, admin_email, reason
        )
        await self.tokens.revoke_all_for_client(client_id)
        return client

    async def update_quota(self, client_id: str, usage_quota: int) -> Client:
        return await self.credentials.update_quota(client_id, usage_quota)

    async def reset_usage(self, client_id: str) -> Client:
        return await self.credentials.reset_usage(client_id)

    async def delete_user(self, user_id: UUID, reason: str | None = None) -> User:
        user = await self.credentials.soft_delete_user(user_id, reason)
        await self.tokens.revoke_all_for_user(user_id)
        return user

    async def cleanup_tokens(self) -> CleanupResult:
        return await self.tokens.cleanup_expired()
