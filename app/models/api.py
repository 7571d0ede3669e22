"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format is camelCase; Python attributes stay snake_case.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class UserStatus(str, Enum):
    """User account status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class UserRole(str, Enum):
    """User role enumeration."""

    USER = "user"
    ADMIN = "admin"


class ClientStatus(str, Enum):
    """API client status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class TokenType(str, Enum):
    """Bearer token kind."""

    ACCESS = "access"
    REFRESH = "refresh"
    API = "api"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def normalize_email(value: str) -> str:
    """Strip and lower-case an email, rejecting anything that is not user@host.tld."""
    email = value.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Please provide a valid email address")
    return email


# ============================================================================
# Registration & Login Models
# ============================================================================


class RegisterRequest(CamelModel):
    """POST /auth/register request body."""

    client_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)
    confirm_password: str | None = Field(None, max_length=1024)
    description: str | None = Field(None, max_length=1000)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        """confirmPassword is optional, but must match when present."""
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(CamelModel):
    """POST /auth/login request body - email+password OR clientId+clientSecret."""

    email: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=1024)
    client_id: str | None = Field(None, max_length=255)
    client_secret: str | None = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v

    @model_validator(mode="after")
    def require_credential_pair(self) -> "LoginRequest":
        """Exactly one complete credential pair must be supplied."""
        has_password = bool(self.email) and bool(self.password)
        has_client = bool(self.client_id) and bool(self.client_secret)
        if not has_password and not has_client:
            raise ValueError(
                "Either email and password, or clientId and clientSecret are required"
            )
        return self

    @property
    def uses_client_credentials(self) -> bool:
        return not (self.email and self.password)


class RefreshRequest(CamelModel):
    """POST /auth/refresh request body."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    """POST /auth/logout request body."""

    refresh_token: str | None = None


class ChangePasswordRequest(CamelModel):
    """POST /auth/change-password request body."""

    current_password: str = Field(..., min_length=1, max_length=1024)
    new_password: str = Field(..., min_length=1, max_length=1024)
    confirm_password: str = Field(..., min_length=1, max_length=1024)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("New passwords do not match")
        return self


class ClientCredentialsRequest(CamelModel):
    """POST /auth/generate-token request body."""

    client_id: str = Field(..., min_length=1, max_length=255)
    client_secret: str = Field(..., min_length=1, max_length=255)


class ChangeSecretRequest(CamelModel):
    """POST /auth/change-secret request body."""

    client_id: str = Field(..., min_length=1, max_length=255)
    current_secret: str = Field(..., min_length=1, max_length=255)


# ============================================================================
# Two-Factor Models
# ============================================================================


class EnableTwoFactorRequest(CamelModel):
    """POST /auth/enable-2fa request body - candidate secret is round-tripped."""

    secret: str = Field(..., min_length=16, max_length=64)
    token: str = Field(..., min_length=1, max_length=16)


class DisableTwoFactorRequest(CamelModel):
    """POST /auth/disable-2fa request body."""

    token: str | None = Field(None, max_length=16)


class VerifyTwoFactorRequest(CamelModel):
    """POST /auth/verify-2fa request body."""

    user_id: UUID
    client_id: str | None = Field(None, max_length=64)
    token: str | None = Field(None, max_length=16)
    backup_code: str | None = Field(None, max_length=32)

    @model_validator(mode="after")
    def require_code(self) -> "VerifyTwoFactorRequest":
        if not self.token and not self.backup_code:
            raise ValueError("Either token or backupCode is required")
        return self


# ============================================================================
# Admin Models
# ============================================================================


class ClientActionRequest(CamelModel):
    """Body for suspend / revoke / reinstate."""

    reason: str | None = Field(None, max_length=500)


class UpdateQuotaRequest(CamelModel):
    """PUT /admin/clients/{client_id}/quota request body."""

    usage_quota: int = Field(..., ge=0)


class DeleteUserRequest(CamelModel):
    """DELETE /admin/users/{user_id} request body."""

    reason: str | None = Field(None, max_length=500)


# ============================================================================
# Response Models
# ============================================================================

DataT = TypeVar("DataT")


class ApiResponse(CamelModel, Generic[DataT]):
    """Uniform success envelope."""

    success: bool = True
    message: str
    data: DataT | None = None


class ErrorResponse(CamelModel):
    """Uniform error envelope."""

    success: bool = False
    message: str
    error: str | None = None


class RegistrationData(CamelModel):
    user_id: UUID
    email: str
    client_name: str
    client_id: str
    client_secret: str
    status: ClientStatus


class LoginData(CamelModel):
    """Login / verify-2fa payload. Tokens are absent when 2FA is still required."""

    require_two_factor: bool = False
    user_id: UUID
    email: str
    client_id: str
    role: UserRole | None = None
    two_factor_enabled: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None


class AccessTokenData(CamelModel):
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


class ClientSecretData(CamelModel):
    client_id: str
    client_secret: str


class ApiTokenData(CamelModel):
    token: str
    expires_at: datetime
    client_id: str


class TwoFactorSetupData(CamelModel):
    secret: str
    otpauth_url: str
    qr_code_url: str


class BackupCodesData(CamelModel):
    backup_codes: list[str]


class ClientData(CamelModel):
    """Admin view of an API client. The secret is never included."""

    client_id: str
    user_id: UUID
    description: str | None
    status: ClientStatus
    usage_quota: int
    usage_count: int
    reset_date: datetime
    approved_by: str | None
    approved_at: datetime | None
    last_used_at: datetime | None
    created_at: datetime


class CleanupData(CamelModel):
    expired_marked: int
    deleted: int
    deny_list_purged: int = 0


class HealthData(CamelModel):
    status: str
    database: str
    timestamp: datetime
