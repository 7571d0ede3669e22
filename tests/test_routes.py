"""
Tests for Auth API Routes.

Drives the FastAPI app with the auth service mocked, checking the camelCase
envelope and the status code each domain error maps to.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import (
    get_auth_service,
    get_credential_store,
    get_current_auth,
    get_token_service,
)
from app.db.session import get_write_db
from app.exceptions import (
    ConflictError,
    InvalidCredentialsError,
    InvalidTwoFactorCodeError,
    PendingApprovalError,
    TokenExpiredError,
)
from app.models.api import ClientStatus, TokenType, UserRole, UserStatus
from app.models.domain import (
    AuthContext,
    ClientCredentials,
    IssuedToken,
    LoginResult,
    RegistrationResult,
    TwoFactorSetup,
)
from app.services.auth import AuthService
from app.services.credentials import CredentialStore
from app.services.tokens import TokenService
from tests.conftest import FIXED_NOW, create_mock_user

USER_ID = uuid4()


def issued(token_type: TokenType) -> IssuedToken:
    return IssuedToken(
        token=f"jwt-{token_type.value}",
        token_type=token_type,
        expires_at=FIXED_NOW + timedelta(hours=1),
        lifetime_seconds=3600,
    )


def login_result(require_two_factor: bool = False) -> LoginResult:
    return LoginResult(
        user_id=USER_ID,
        email="user@example.com",
        client_id="client-1",
        role=UserRole.USER,
        two_factor_enabled=require_two_factor,
        require_two_factor=require_two_factor,
        access_token=None if require_two_factor else issued(TokenType.ACCESS),
        refresh_token=None if require_two_factor else issued(TokenType.REFRESH),
    )


@pytest.fixture
def auth_service() -> AsyncMock:
    return AsyncMock(spec=AuthService)


@pytest.fixture
def api(
    client: TestClient,
    override,
    auth_service: AsyncMock,
    db_session: AsyncMock,
    user_auth: AuthContext,
) -> TestClient:
    """Client with the auth service mocked and the caller authenticated."""

    async def _db():
        yield db_session

    client.app.dependency_overrides[get_write_db] = _db
    override(get_auth_service, auth_service)
    override(get_current_auth, user_auth)
    return client


BEARER = {"Authorization": "Bearer jwt-access"}


class TestRegister:
    def test_register_created(self, api: TestClient, auth_service: AsyncMock):
        """201 with the one-time secret and a pending status."""
        auth_service.register.return_value = RegistrationResult(
            user_id=USER_ID,
            email="new@example.com",
            client_name="Acme",
            client_id="client-1",
            client_secret="s" * 64,
            client_status=ClientStatus.PENDING,
        )

        response = api.post(
            "/auth/register",
            json={
                "clientName": "Acme",
                "email": "New@Example.com",
                "password": "long-enough",
                "confirmPassword": "long-enough",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Registration successful. Your API access is pending approval."
        assert body["data"]["clientSecret"] == "s" * 64
        assert body["data"]["status"] == "pending"
        assert body["data"]["userId"] == str(USER_ID)
        auth_service.register.assert_awaited_once_with(
            client_name="Acme",
            email="new@example.com",
            password="long-enough",
            description=None,
        )

    def test_invalid_email(self, api: TestClient):
        response = api.post(
            "/auth/register",
            json={"clientName": "Acme", "email": "not-an-email", "password": "long-enough"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body == {
            "success": False,
            "message": "Please provide a valid email address",
            "error": "VALIDATION_ERROR",
        }

    def test_password_mismatch(self, api: TestClient):
        response = api.post(
            "/auth/register",
            json={
                "clientName": "Acme",
                "email": "a@example.com",
                "password": "long-enough",
                "confirmPassword": "different",
            },
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Passwords do not match"

    def test_missing_fields(self, api: TestClient):
        response = api.post("/auth/register", json={"email": "a@example.com"})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_duplicate_email(self, api: TestClient, auth_service: AsyncMock):
        auth_service.register.side_effect = ConflictError("User with this email already exists")

        response = api.post(
            "/auth/register",
            json={"clientName": "Acme", "email": "dup@example.com", "password": "long-enough"},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"


class TestLogin:
    def test_login_success(self, api: TestClient, auth_service: AsyncMock):
        auth_service.login.return_value = login_result()

        response = api.post(
            "/auth/login", json={"email": "user@example.com", "password": "long-enough"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["accessToken"] == "jwt-access"
        assert data["refreshToken"] == "jwt-refresh"
        assert data["expiresIn"] == 3600
        assert data["tokenType"] == "Bearer"
        assert data["role"] == "user"
        assert data["requireTwoFactor"] is False

    def test_login_with_client_credentials(self, api: TestClient, auth_service: AsyncMock):
        auth_service.login.return_value = login_result()

        api.post("/auth/login", json={"clientId": "client-1", "clientSecret": "s" * 64})

        auth_service.login.assert_awaited_once_with(client_id="client-1", client_secret="s" * 64)

    def test_two_factor_required(self, api: TestClient, auth_service: AsyncMock):
        """No token fields at all while 2FA is pending."""
        auth_service.login.return_value = login_result(require_two_factor=True)

        response = api.post(
            "/auth/login", json={"email": "user@example.com", "password": "long-enough"}
        )

        body = response.json()
        assert body["message"] == "Two-factor authentication required"
        assert body["data"]["requireTwoFactor"] is True
        assert body["data"]["userId"] == str(USER_ID)
        assert "accessToken" not in body["data"]
        assert "refreshToken" not in body["data"]

    def test_invalid_credentials(self, api: TestClient, auth_service: AsyncMock):
        auth_service.login.side_effect = InvalidCredentialsError()

        response = api.post("/auth/login", json={"email": "a@example.com", "password": "x"})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json() == {
            "success": False,
            "message": "Invalid credentials",
            "error": "INVALID_CREDENTIALS",
        }

    def test_pending_approval(self, api: TestClient, auth_service: AsyncMock):
        auth_service.login.side_effect = PendingApprovalError("client-1")

        response = api.post("/auth/login", json={"email": "a@example.com", "password": "x"})

        assert response.status_code == 403
        assert response.json()["message"] == "Your API access is pending approval"

    def test_no_credential_pair(self, api: TestClient):
        response = api.post("/auth/login", json={"email": "a@example.com"})
        assert response.status_code == 400
        assert "clientId and clientSecret" in response.json()["message"]


class TestSessions:
    def test_refresh(self, api: TestClient, auth_service: AsyncMock):
        auth_service.refresh.return_value = issued(TokenType.ACCESS)

        response = api.post("/auth/refresh", json={"refreshToken": "jwt-refresh"})

        assert response.status_code == 200
        assert response.json()["data"] == {
            "accessToken": "jwt-access",
            "expiresIn": 3600,
            "tokenType": "Bearer",
        }

    def test_refresh_expired(self, api: TestClient, auth_service: AsyncMock):
        auth_service.refresh.side_effect = TokenExpiredError()

        response = api.post("/auth/refresh", json={"refreshToken": "old"})

        assert response.status_code == 401
        assert response.json()["error"] == "TOKEN_EXPIRED"

    def test_logout(self, api: TestClient, auth_service: AsyncMock):
        response = api.post("/auth/logout", json={"refreshToken": "jwt-refresh"}, headers=BEARER)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Logged out successfully"}
        auth_service.logout.assert_awaited_once_with("jwt-access", "jwt-refresh")

    def test_logout_without_body(self, api: TestClient, auth_service: AsyncMock):
        response = api.post("/auth/logout", headers=BEARER)

        assert response.status_code == 200
        auth_service.logout.assert_awaited_once_with("jwt-access", None)

    def test_logout_without_header(self, api: TestClient):
        response = api.post("/auth/logout")
        assert response.status_code == 401
        assert response.json()["message"] == "Authorization header required"

    def test_change_password(
        self, api: TestClient, auth_service: AsyncMock, user_auth: AuthContext
    ):
        response = api.post(
            "/auth/change-password",
            json={
                "currentPassword": "old-password",
                "newPassword": "new-password",
                "confirmPassword": "new-password",
            },
            headers=BEARER,
        )

        assert response.status_code == 200
        auth_service.change_password.assert_awaited_once_with(
            user_auth.user_id, "old-password", "new-password"
        )

    def test_change_secret(self, api: TestClient, auth_service: AsyncMock):
        auth_service.change_client_secret.return_value = ClientCredentials(
            client_id="client-1", client_secret="n" * 64
        )

        response = api.post(
            "/auth/change-secret",
            json={"clientId": "client-1", "currentSecret": "o" * 64},
            headers=BEARER,
        )

        assert response.json()["data"] == {"clientId": "client-1", "clientSecret": "n" * 64}

    def test_generate_token(self, api: TestClient, auth_service: AsyncMock):
        auth_service.generate_api_token.return_value = issued(TokenType.API)

        response = api.post(
            "/auth/generate-token", json={"clientId": "client-1", "clientSecret": "s" * 64}
        )

        data = response.json()["data"]
        assert data["token"] == "jwt-api"
        assert data["clientId"] == "client-1"
        assert "expiresAt" in data


class TestTwoFactorRoutes:
    def test_generate(self, api: TestClient, auth_service: AsyncMock):
        auth_service.generate_two_factor.return_value = TwoFactorSetup(
            secret="S" * 32,
            otpauth_url="otpauth://totp/x",
            qr_code_url="data:image/png;base64,AA==",
        )

        response = api.post("/auth/generate-2fa", headers=BEARER)

        assert response.json()["data"] == {
            "secret": "S" * 32,
            "otpauthUrl": "otpauth://totp/x",
            "qrCodeUrl": "data:image/png;base64,AA==",
        }

    def test_enable(self, api: TestClient, auth_service: AsyncMock):
        auth_service.enable_two_factor.return_value = ["ab12cd34", "ef56ab78"]

        response = api.post(
            "/auth/enable-2fa", json={"secret": "S" * 32, "token": "123456"}, headers=BEARER
        )

        assert response.json()["data"] == {"backupCodes": ["ab12cd34", "ef56ab78"]}

    def test_enable_wrong_code(self, api: TestClient, auth_service: AsyncMock):
        auth_service.enable_two_factor.side_effect = InvalidTwoFactorCodeError()

        response = api.post(
            "/auth/enable-2fa", json={"secret": "S" * 32, "token": "000000"}, headers=BEARER
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_2FA_CODE"

    def test_disable_without_body(
        self, api: TestClient, auth_service: AsyncMock, user_auth: AuthContext
    ):
        response = api.post("/auth/disable-2fa", headers=BEARER)

        assert response.status_code == 200
        auth_service.disable_two_factor.assert_awaited_once_with(user_auth.user_id, None)

    def test_verify(self, api: TestClient, auth_service: AsyncMock):
        auth_service.verify_two_factor.return_value = login_result()

        response = api.post(
            "/auth/verify-2fa", json={"userId": str(USER_ID), "backupCode": "ab12cd34"}
        )

        assert response.json()["data"]["accessToken"] == "jwt-access"
        auth_service.verify_two_factor.assert_awaited_once_with(
            USER_ID, code=None, backup_code="ab12cd34", client_id=None
        )

    def test_verify_carries_client_id(self, api: TestClient, auth_service: AsyncMock):
        """The clientId echoed from the login response reaches the service."""
        auth_service.verify_two_factor.return_value = login_result()

        response = api.post(
            "/auth/verify-2fa",
            json={"userId": str(USER_ID), "token": "123456", "clientId": "client-1"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["clientId"] == "client-1"
        auth_service.verify_two_factor.assert_awaited_once_with(
            USER_ID, code="123456", backup_code=None, client_id="client-1"
        )

    def test_verify_requires_a_code(self, api: TestClient):
        response = api.post("/auth/verify-2fa", json={"userId": str(USER_ID)})
        assert response.status_code == 400


class TestAccountRouteAuth:
    """The real get_current_auth in front of the account routes."""

    @pytest.fixture
    def guarded_api(
        self,
        client: TestClient,
        override,
        auth_service: AsyncMock,
        db_session: AsyncMock,
        token_service: TokenService,
        active_user,
        active_client,
    ) -> TestClient:
        async def _db():
            yield db_session

        credentials = AsyncMock(spec=CredentialStore)
        credentials.get_user = AsyncMock(return_value=active_user)
        credentials.get_client = AsyncMock(return_value=active_client)

        client.app.dependency_overrides[get_write_db] = _db
        override(get_auth_service, auth_service)
        override(get_token_service, token_service)
        override(get_credential_store, credentials)
        return client

    def test_access_token_reaches_route(
        self,
        guarded_api: TestClient,
        auth_service: AsyncMock,
        token_service: TokenService,
        active_user,
        active_client,
    ):
        issued = token_service.issue_access_token(active_user, active_client)

        response = guarded_api.post(
            "/auth/disable-2fa", headers={"Authorization": f"Bearer {issued.token}"}
        )

        assert response.status_code == 200
        auth_service.disable_two_factor.assert_awaited_once_with(active_user.id, None)

    def test_api_token_cannot_disable_two_factor(
        self,
        guarded_api: TestClient,
        auth_service: AsyncMock,
        token_service: TokenService,
        active_user,
        active_client,
    ):
        """An API token from client credentials never passed 2FA, so it is refused."""
        issued = asyncio.run(token_service.issue_api_token(active_user, active_client))

        response = guarded_api.post(
            "/auth/disable-2fa", headers={"Authorization": f"Bearer {issued.token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_TOKEN"
        auth_service.disable_two_factor.assert_not_awaited()

    def test_suspended_user_access_token_refused(
        self,
        guarded_api: TestClient,
        auth_service: AsyncMock,
        token_service: TokenService,
        active_user,
        active_client,
    ):
        """Suspension takes effect before the user's access token expires."""
        issued = token_service.issue_access_token(active_user, active_client)
        suspended = create_mock_user(user_id=active_user.id, status=UserStatus.SUSPENDED)
        store = AsyncMock(spec=CredentialStore)
        store.get_user = AsyncMock(return_value=suspended)
        guarded_api.app.dependency_overrides[get_credential_store] = lambda: store

        response = guarded_api.post(
            "/auth/change-password",
            json={
                "currentPassword": "old-password",
                "newPassword": "new-password-1",
                "confirmPassword": "new-password-1",
            },
            headers={"Authorization": f"Bearer {issued.token}"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_FAILED"
        auth_service.change_password.assert_not_awaited()


class TestAppLevel:
    def test_root(self, client: TestClient):
        response = client.get("/")
        assert response.json()["service"] == "Banking Intelligence API"

    def test_health_ok(self, client: TestClient):
        with patch("app.main.check_database", AsyncMock(return_value=True)):
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["data"]["database"] == "connected"

    def test_health_degraded(self, client: TestClient):
        with patch("app.main.check_database", AsyncMock(return_value=False)):
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_metrics(self, client: TestClient):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "auth_logins_total" in response.text

    def test_unhandled_error_is_500(self, api: TestClient, auth_service: AsyncMock):
        """Unexpected exceptions never leak details."""
        auth_service.refresh.side_effect = RuntimeError("db exploded")

        response = api.post("/auth/refresh", json={"refreshToken": "x"})

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "Internal server error",
            "error": "INTERNAL_ERROR",
        }
