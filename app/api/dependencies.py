"""
FastAPI Dependencies - Service construction, authentication and authorization.

NO DICTIONARIES - All dependencies return typed objects.
Every service is built per request around the request's database session.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.session import get_read_db, get_write_db
from app.exceptions import AuthenticationError, AuthorizationError
from app.models.api import ClientStatus, UserRole
from app.models.domain import AuthContext
from app.services.auth import AuthService
from app.services.client_admin import ClientAdminService
from app.services.credentials import CredentialStore
from app.services.tokens import TokenService
from app.services.two_factor import TwoFactorService

logger = get_logger(__name__)

# Bearer token scheme; missing headers are reported through our own error envelope
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Service factories
# ============================================================================


def get_credential_store(db: AsyncSession = Depends(get_write_db)) -> CredentialStore:
    return CredentialStore(db)


def get_read_credential_store(db: AsyncSession = Depends(get_read_db)) -> CredentialStore:
    """Read-only lookups, served from the replica when one is configured."""
    return CredentialStore(db)


def get_token_service(db: AsyncSession = Depends(get_write_db)) -> TokenService:
    return TokenService(db)


def get_two_factor_service(db: AsyncSession = Depends(get_write_db)) -> TwoFactorService:
    return TwoFactorService(db)


def get_auth_service(
    credentials: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
    two_factor: TwoFactorService = Depends(get_two_factor_service),
) -> AuthService:
    return AuthService(credentials=credentials, tokens=tokens, two_factor=two_factor)


def get_client_admin_service(
    credentials: CredentialStore = Depends(get_credential_store),
    tokens: TokenService = Depends(get_token_service),
) -> ClientAdminService:
    return ClientAdminService(credentials=credentials, tokens=tokens)


# ============================================================================
# Authentication
# ============================================================================


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """
    Extract the raw bearer token from the Authorization header.

    Raises:
        AuthenticationError: header missing or not a Bearer credential
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authorization header required")
    return credentials.credentials


async def get_current_auth(
    token: str = Depends(get_bearer_token),
    tokens: TokenService = Depends(get_token_service),
    credentials: CredentialStore = Depends(get_credential_store),
) -> AuthContext:
    """
    Validate a user access token and return the caller.

    API tokens authenticate a client, not a signed-in user, so they are
    rejected here. The account and the client named in the token must still
    be active; suspending or deleting takes effect before the token expires.

    Usage:
        @router.post("/auth/generate-2fa")
        async def generate(auth: AuthContext = Depends(get_current_auth)):
            ...
    """
    auth = await tokens.validate_access_token(token)

    user = await credentials.get_user(auth.user_id)
    if user is None or not user.is_active:
        logger.warning("access_token_inactive_user", user_id=str(auth.user_id))
        raise AuthenticationError("Account is not active")

    client = await credentials.get_client(auth.client_id)
    if client is None or client.status != ClientStatus.ACTIVE.value:
        logger.warning("access_token_inactive_client", client_id=auth.client_id)
        raise AuthenticationError("Client is not active")

    return auth


async def require_admin(
    auth: AuthContext = Depends(get_current_auth),
    credentials: CredentialStore = Depends(get_credential_store),
) -> AuthContext:
    """
    Require an active user whose stored role is admin.

    The role claim alone is not trusted; a demoted admin loses access
    immediately.
    """
    user = await credentials.get_user(auth.user_id)
    if user is None or not user.is_active or user.role != UserRole.ADMIN.value:
        logger.warning(
            "admin_auth_insufficient_role",
            user_id=str(auth.user_id),
            role=user.role if user else None,
        )
        raise AuthorizationError("Admin role required")
    return auth
