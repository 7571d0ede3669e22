"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from app.models.api import ClientStatus, TokenType, UserRole


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token. The raw value is only ever held in memory."""

    token: str
    token_type: TokenType
    expires_at: datetime
    lifetime_seconds: int

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("token cannot be empty")
        if self.lifetime_seconds <= 0:
            raise ValueError(f"lifetime must be positive: {self.lifetime_seconds}")


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller, decoded from a validated bearer token."""

    user_id: UUID
    client_id: str
    email: str
    role: UserRole
    token_type: TokenType
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class LoginResult:
    """Outcome of login or 2FA verification.

    When require_two_factor is set, both tokens are None.
    """

    user_id: UUID
    email: str
    client_id: str
    role: UserRole
    two_factor_enabled: bool
    require_two_factor: bool
    access_token: IssuedToken | None = None
    refresh_token: IssuedToken | None = None

    def __post_init__(self) -> None:
        if self.require_two_factor and (self.access_token or self.refresh_token):
            raise ValueError("tokens must not be issued while 2FA is pending")


@dataclass(frozen=True)
class RegistrationResult:
    """New user plus its first (pending) client. Holds the only plaintext secret."""

    user_id: UUID
    email: str
    client_name: str
    client_id: str
    client_secret: str
    client_status: ClientStatus


@dataclass(frozen=True)
class ClientCredentials:
    """Public client id with a freshly generated plaintext secret."""

    client_id: str
    client_secret: str


@dataclass(frozen=True)
class TwoFactorSetup:
    """Unpersisted candidate TOTP secret and its provisioning artefacts."""

    secret: str
    otpauth_url: str
    qr_code_url: str


@dataclass(frozen=True)
class CleanupResult:
    """Counts from one expired-token sweep."""

    expired_marked: int
    deleted: int
    deny_list_purged: int = 0
