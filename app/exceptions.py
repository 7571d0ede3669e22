"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Every error carries its HTTP status and a stable error code, so the API layer
maps errors by type in exactly one place.
"""

from uuid import UUID


class AuthServiceError(Exception):
    """Base exception for all credential and session errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(AuthServiceError):
    """Raised when a request is well-formed JSON but semantically invalid."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class InvalidTwoFactorCodeError(ValidationError):
    """Raised when a TOTP or backup code does not verify."""

    error_code = "INVALID_2FA_CODE"

    def __init__(self) -> None:
        super().__init__("Invalid two-factor authentication code")


class TwoFactorNotEnabledError(ValidationError):
    """Raised when a 2FA operation targets a user without 2FA enabled."""

    error_code = "2FA_NOT_ENABLED"

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__("Two-factor authentication is not enabled")


class AuthenticationError(AuthServiceError):
    """Raised when the caller cannot be authenticated."""

    status_code = 401
    error_code = "AUTHENTICATION_FAILED"


class InvalidCredentialsError(AuthenticationError):
    """Raised for any login failure that must not reveal which part was wrong."""

    error_code = "INVALID_CREDENTIALS"

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class InvalidTokenError(AuthenticationError):
    """Raised when a token is malformed, badly signed, or unknown."""

    error_code = "INVALID_TOKEN"

    def __init__(self, reason: str = "Invalid token") -> None:
        self.reason = reason
        super().__init__(reason)


class TokenExpiredError(AuthenticationError):
    """Raised when a token is past its expiry."""

    error_code = "TOKEN_EXPIRED"

    def __init__(self) -> None:
        super().__init__("Token has expired")


class TokenRevokedError(AuthenticationError):
    """Raised when a token has been revoked."""

    error_code = "TOKEN_REVOKED"

    def __init__(self) -> None:
        super().__init__("Token has been revoked")


class AuthorizationError(AuthServiceError):
    """Raised when an authenticated caller lacks permission."""

    status_code = 403
    error_code = "FORBIDDEN"


class PendingApprovalError(AuthorizationError):
    """Raised when credentials are correct but the client awaits approval."""

    error_code = "CLIENT_PENDING_APPROVAL"

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__("Your API access is pending approval")


class NotFoundError(AuthServiceError):
    """Raised when a referenced user or client does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class ConflictError(AuthServiceError):
    """Raised when a write conflicts with existing state."""

    status_code = 409
    error_code = "CONFLICT"


class InvalidStatusTransitionError(ConflictError):
    """Raised when a client status change is not in the transition table."""

    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, client_id: str, current: str, target: str) -> None:
        self.client_id = client_id
        self.current = current
        self.target = target
        super().__init__(f"Client cannot move from {current} to {target}")


class InternalError(AuthServiceError):
    """Raised when an unexpected failure must surface as a 500."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
