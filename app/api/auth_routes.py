"""
Auth Routes - FastAPI endpoints for registration, login, sessions and 2FA.

NO DICTIONARIES - All requests/responses use Pydantic models.
Domain errors propagate to the handler in app.main, which maps them by type.
"""

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_auth_service, get_bearer_token, get_current_auth
from app.models.api import (
    AccessTokenData,
    ApiResponse,
    ApiTokenData,
    BackupCodesData,
    ChangePasswordRequest,
    ChangeSecretRequest,
    ClientCredentialsRequest,
    ClientSecretData,
    DisableTwoFactorRequest,
    EnableTwoFactorRequest,
    LoginData,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    RegistrationData,
    TwoFactorSetupData,
    VerifyTwoFactorRequest,
)
from app.models.domain import AuthContext, LoginResult
from app.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_data(result: LoginResult) -> LoginData:
    data = LoginData(
        require_two_factor=result.require_two_factor,
        user_id=result.user_id,
        email=result.email,
        client_id=result.client_id,
        two_factor_enabled=result.two_factor_enabled,
    )
    if result.access_token and result.refresh_token:
        data.role = result.role
        data.access_token = result.access_token.token
        data.refresh_token = result.refresh_token.token
        data.expires_in = result.access_token.lifetime_seconds
        data.token_type = "Bearer"
    return data


@router.post(
    "/register",
    response_model=ApiResponse[RegistrationData],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    request: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[RegistrationData]:
    """
    Register a user and its first API client.

    The client starts pending and cannot log in until an admin approves it.
    The client secret appears in this response only.
    """
    result = await service.register(
        client_name=request.client_name,
        email=request.email,
        password=request.password,
        description=request.description,
    )
    return ApiResponse(
        message="Registration successful. Your API access is pending approval.",
        data=RegistrationData(
            user_id=result.user_id,
            email=result.email,
            client_name=result.client_name,
            client_id=result.client_id,
            client_secret=result.client_secret,
            status=result.client_status,
        ),
    )


@router.post("/login", response_model=ApiResponse[LoginData], response_model_exclude_none=True)
async def login(
    request: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[LoginData]:
    """
    Log in with email+password or clientId+clientSecret.

    Users with 2FA enabled receive requireTwoFactor and no tokens; they
    continue at /auth/verify-2fa.
    """
    if request.uses_client_credentials:
        result = await service.login(
            client_id=request.client_id, client_secret=request.client_secret
        )
    else:
        result = await service.login(email=request.email, password=request.password)

    message = (
        "Two-factor authentication required" if result.require_two_factor else "Login successful"
    )
    return ApiResponse(message=message, data=_login_data(result))


@router.post(
    "/verify-2fa", response_model=ApiResponse[LoginData], response_model_exclude_none=True
)
async def verify_two_factor(
    request: VerifyTwoFactorRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[LoginData]:
    """Second login step. Echo the clientId from the login response to stay on that client."""
    result = await service.verify_two_factor(
        request.user_id,
        code=request.token,
        backup_code=request.backup_code,
        client_id=request.client_id,
    )
    return ApiResponse(message="Two-factor authentication successful", data=_login_data(result))


@router.post("/refresh", response_model=ApiResponse[AccessTokenData])
async def refresh(
    request: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AccessTokenData]:
    access = await service.refresh(request.refresh_token)
    return ApiResponse(
        message="Token refreshed",
        data=AccessTokenData(access_token=access.token, expires_in=access.lifetime_seconds),
    )


@router.post("/logout", response_model=ApiResponse[None], response_model_exclude_none=True)
async def logout(
    request: LogoutRequest | None = None,
    token: str = Depends(get_bearer_token),
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    """Revoke the presented access token and, if given, the refresh token."""
    await service.logout(token, request.refresh_token if request else None)
    return ApiResponse(message="Logged out successfully")


@router.post(
    "/change-password", response_model=ApiResponse[None], response_model_exclude_none=True
)
async def change_password(
    request: ChangePasswordRequest,
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    """Change password. Every refresh token of the user is revoked."""
    await service.change_password(auth.user_id, request.current_password, request.new_password)
    return ApiResponse(message="Password changed successfully")


@router.post("/change-secret", response_model=ApiResponse[ClientSecretData])
async def change_secret(
    request: ChangeSecretRequest,
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[ClientSecretData]:
    """Rotate a client secret. Every token issued to the client is revoked."""
    creds = await service.change_client_secret(auth, request.client_id, request.current_secret)
    return ApiResponse(
        message="Client secret changed successfully",
        data=ClientSecretData(client_id=creds.client_id, client_secret=creds.client_secret),
    )


@router.post("/generate-token", response_model=ApiResponse[ApiTokenData])
async def generate_token(
    request: ClientCredentialsRequest,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[ApiTokenData]:
    issued = await service.generate_api_token(request.client_id, request.client_secret)
    return ApiResponse(
        message="API token generated",
        data=ApiTokenData(
            token=issued.token, expires_at=issued.expires_at, client_id=request.client_id
        ),
    )


@router.post("/generate-2fa", response_model=ApiResponse[TwoFactorSetupData])
async def generate_two_factor(
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[TwoFactorSetupData]:
    """
    Create a candidate TOTP secret.

    The secret is not stored. Send it back with a code to /auth/enable-2fa.
    """
    setup = await service.generate_two_factor(auth.user_id)
    return ApiResponse(
        message="Two-factor secret generated",
        data=TwoFactorSetupData(
            secret=setup.secret, otpauth_url=setup.otpauth_url, qr_code_url=setup.qr_code_url
        ),
    )


@router.post("/enable-2fa", response_model=ApiResponse[BackupCodesData])
async def enable_two_factor(
    request: EnableTwoFactorRequest,
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[BackupCodesData]:
    codes = await service.enable_two_factor(auth.user_id, request.secret, request.token)
    return ApiResponse(
        message="Two-factor authentication enabled",
        data=BackupCodesData(backup_codes=codes),
    )


@router.post("/disable-2fa", response_model=ApiResponse[None], response_model_exclude_none=True)
async def disable_two_factor(
    request: DisableTwoFactorRequest | None = None,
    auth: AuthContext = Depends(get_current_auth),
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    await service.disable_two_factor(auth.user_id, request.token if request else None)
    return ApiResponse(message="Two-factor authentication disabled")
