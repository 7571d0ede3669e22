"""
Token Service - Issue, validate, refresh and revoke JWT bearer tokens.

Uses SHA-256 hash of tokens (never stores raw tokens).

SECURITY: This is a critical security component.
- Access tokens are stateless; a revoked one goes on a deny list
- Refresh and API tokens are persisted so they can be revoked
- Expiry is checked against the injected clock: expires_at == now is expired
"""

import hashlib
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Client, RevokedAccessToken, Token, User, utc_now
from app.exceptions import InvalidTokenError, TokenExpiredError, TokenRevokedError
from app.models.api import ClientStatus, TokenType, UserRole
from app.models.domain import AuthContext, CleanupResult, IssuedToken
from app.observability.metrics import metrics

logger = get_logger(__name__)


def hash_token(token: str) -> str:
    """
    Hash a token using SHA-256.

    We never store raw tokens - only hashes. A compromised database does not
    leak usable credentials, and the fixed-size digest indexes well.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class TokenService:
    """
    Service for JWT lifecycle.

    Usage:
        tokens = TokenService(db)
        access = tokens.issue_access_token(user, client)
        refresh = await tokens.issue_refresh_token(user, client)
        new_access = await tokens.refresh(refresh.token)
        await tokens.revoke(refresh.token)
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        jwt_secret: str | None = None,
        refresh_secret: str | None = None,
    ):
        self.db = db
        self.clock = clock
        self.jwt_secret = jwt_secret or settings.jwt_secret
        self.refresh_secret = refresh_secret or settings.jwt_refresh_secret
        self.algorithm = settings.jwt_algorithm

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _secret_for(self, token_type: TokenType) -> str:
        return self.refresh_secret if token_type == TokenType.REFRESH else self.jwt_secret

    def _lifetime_for(self, token_type: TokenType) -> timedelta:
        if token_type == TokenType.ACCESS:
            return timedelta(minutes=settings.access_token_expire_minutes)
        if token_type == TokenType.REFRESH:
            return timedelta(days=settings.refresh_token_expire_days)
        return timedelta(days=settings.api_token_expire_days)

    def _encode(self, user: User, client: Client, token_type: TokenType) -> IssuedToken:
        now = self.clock()
        iat = int(now.timestamp())
        lifetime = int(self._lifetime_for(token_type).total_seconds())
        exp = iat + lifetime

        payload = {
            "sub": str(user.id),
            "client_id": client.client_id,
            "email": user.email,
            "role": user.role,
            "two_factor_enabled": user.two_factor_enabled,
            "type": token_type.value,
            "jti": secrets.token_hex(8),
            "iat": iat,
            "exp": exp,
        }
        token = jwt.encode(payload, self._secret_for(token_type), algorithm=self.algorithm)
        metrics.record_token_issued(token_type.value)

        return IssuedToken(
            token=token,
            token_type=token_type,
            expires_at=datetime.fromtimestamp(exp, UTC),
            lifetime_seconds=lifetime,
        )

    def decode(self, token: str, token_type: TokenType) -> dict[str, Any]:
        """
        Verify signature, type and expiry.

        Expiry is checked here rather than by PyJWT so that the injected clock
        is authoritative.

        Raises:
            InvalidTokenError: bad signature, malformed, or wrong type
            TokenExpiredError: exp <= now
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self._secret_for(token_type),
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "exp", "type"],
                },
            )
        except jwt.InvalidTokenError as e:
            logger.debug("jwt_decode_failed", error=str(e), expected_type=token_type.value)
            raise InvalidTokenError() from e

        if payload.get("type") != token_type.value:
            raise InvalidTokenError(f"Expected a {token_type.value} token")

        if int(payload["exp"]) <= int(self.clock().timestamp()):
            raise TokenExpiredError()

        return payload

    @staticmethod
    def _context(payload: dict[str, Any]) -> AuthContext:
        try:
            return AuthContext(
                user_id=UUID(payload["sub"]),
                client_id=str(payload.get("client_id", "")),
                email=str(payload.get("email", "")),
                role=UserRole(payload.get("role", UserRole.USER.value)),
                token_type=TokenType(payload["type"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),
            )
        except (KeyError, ValueError) as e:
            raise InvalidTokenError() from e

    @staticmethod
    def peek_type(token: str) -> TokenType:
        """Read the type claim without verifying; used only to pick a signing secret."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            return TokenType(claims["type"])
        except (jwt.InvalidTokenError, KeyError, ValueError) as e:
            raise InvalidTokenError() from e

    async def _stored(self, token: str) -> Token | None:
        stmt = select(Token).where(Token.token_hash == hash_token(token))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _is_denied(self, token: str) -> bool:
        stmt = select(RevokedAccessToken.token_hash).where(
            RevokedAccessToken.token_hash == hash_token(token)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User, client: Client) -> IssuedToken:
        """Short-lived, not persisted."""
        return self._encode(user, client, TokenType.ACCESS)

    async def _issue_persisted(
        self, user: User, client: Client, token_type: TokenType
    ) -> IssuedToken:
        issued = self._encode(user, client, token_type)
        self.db.add(
            Token(
                token_hash=hash_token(issued.token),
                token_type=token_type.value,
                user_id=user.id,
                client_id=client.client_id,
                expires_at=issued.expires_at,
                is_revoked=False,
            )
        )
        await self.db.commit()
        logger.info(
            "token_issued",
            token_type=token_type.value,
            user_id=str(user.id),
            client_id=client.client_id,
            expires_at=issued.expires_at.isoformat(),
        )
        return issued

    async def issue_refresh_token(self, user: User, client: Client) -> IssuedToken:
        return await self._issue_persisted(user, client, TokenType.REFRESH)

    async def issue_api_token(self, user: User, client: Client) -> IssuedToken:
        """Long-lived machine token; the client must already be active."""
        return await self._issue_persisted(user, client, TokenType.API)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> IssuedToken:
        """
        Exchange a refresh token for a new access token.

        The refresh token itself is not rotated; it stays valid until it
        expires or is revoked.

        Raises:
            InvalidTokenError: malformed, unknown, or owner/client no longer active
            TokenRevokedError: stored row revoked
            TokenExpiredError: expired
        """
        payload = self.decode(refresh_token, TokenType.REFRESH)
        row = await self._stored(refresh_token)
        now = self.clock()

        if row is None:
            logger.warning("refresh_token_unknown", user_id=payload.get("sub"))
            raise InvalidTokenError("Refresh token not recognised")
        if row.is_revoked:
            logger.warning("revoked_token_rejected", token_hash=row.token_hash[:16])
            raise TokenRevokedError()
        if row.expires_at <= now:
            raise TokenExpiredError()

        user = (
            await self.db.execute(
                select(User).where(User.id == row.user_id, User.deleted_at.is_(None))
            )
        ).scalar_one_or_none()
        client = (
            await self.db.execute(
                select(Client).where(Client.client_id == row.client_id, Client.deleted_at.is_(None))
            )
        ).scalar_one_or_none()
        if user is None or not user.is_active:
            raise InvalidTokenError("User is not active")
        if client is None or client.status != ClientStatus.ACTIVE.value:
            raise InvalidTokenError("Client is not active")

        access = self.issue_access_token(user, client)
        row.last_used_at = now
        await self.db.commit()

        logger.info("access_token_refreshed", user_id=str(user.id), client_id=client.client_id)
        return access

    async def validate_access_token(self, token: str) -> AuthContext:
        """
        Raises:
            InvalidTokenError / TokenExpiredError: from decode
            TokenRevokedError: token is on the deny list
        """
        payload = self.decode(token, TokenType.ACCESS)
        if await self._is_denied(token):
            logger.warning("revoked_token_rejected", token_hash=hash_token(token)[:16])
            raise TokenRevokedError()
        return self._context(payload)

    async def validate_api_token(self, token: str) -> AuthContext:
        """API tokens must have a usable stored row."""
        payload = self.decode(token, TokenType.API)
        row = await self._stored(token)
        now = self.clock()
        if row is None:
            raise InvalidTokenError("API token not recognised")
        if row.is_revoked:
            raise TokenRevokedError()
        if not row.is_usable(now):
            raise TokenExpiredError()
        row.last_used_at = now
        await self.db.commit()
        return self._context(payload)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def revoke(self, token: str) -> None:
        """
        Revoke a token. Idempotent: revoking twice, or revoking a token this
        service never issued, is not an error.

        A stored token is flagged. An access token is added to the deny list
        until its own expiry.
        """
        token_hash = hash_token(token)
        row = await self._stored(token)

        if row is not None:
            if not row.is_revoked:
                row.is_revoked = True
                await self.db.commit()
                metrics.record_tokens_revoked(row.token_type)
                logger.info(
                    "token_revoked",
                    token_hash=token_hash[:16],
                    token_type=row.token_type,
                    user_id=str(row.user_id),
                )
            return

        try:
            token_type = self.peek_type(token)
            payload = jwt.decode(
                token,
                self._secret_for(token_type),
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
            expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
            user_id = UUID(payload["sub"])
        except (InvalidTokenError, jwt.InvalidTokenError, KeyError, ValueError):
            logger.info("revoke_ignored_unrecognised_token", token_hash=token_hash[:16])
            return

        if token_type != TokenType.ACCESS or expires_at <= self.clock():
            return

        self.db.add(
            RevokedAccessToken(
                token_hash=token_hash,
                user_id=user_id,
                client_id=str(payload.get("client_id", "")),
                revoked_at=self.clock(),
                token_expires_at=expires_at,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent logout already inserted the deny-list entry
            await self.db.rollback()
            return

        metrics.record_tokens_revoked(TokenType.ACCESS.value)
        logger.info(
            "token_revoked",
            token_hash=token_hash[:16],
            token_type=TokenType.ACCESS.value,
            user_id=payload["sub"],
            expires_at=expires_at.isoformat(),
        )

    async def revoke_all_for_user(
        self, user_id: UUID, token_types: tuple[TokenType, ...] | None = None
    ) -> int:
        """Revoke every stored token of a user, optionally limited to some types."""
        stmt = update(Token).where(Token.user_id == user_id, Token.is_revoked.is_(False))
        if token_types:
            stmt = stmt.where(Token.token_type.in_([t.value for t in token_types]))
        result = await self.db.execute(stmt.values(is_revoked=True))
        await self.db.commit()
        count = result.rowcount or 0  # type: ignore[attr-defined]
        logger.info(
            "user_tokens_revoked",
            user_id=str(user_id),
            token_types=[t.value for t in token_types] if token_types else "all",
            count=count,
        )
        return count

    async def revoke_all_for_client(self, client_id: str) -> int:
        stmt = (
            update(Token)
            .where(Token.client_id == client_id, Token.is_revoked.is_(False))
            .values(is_revoked=True)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        count = result.rowcount or 0  # type: ignore[attr-defined]
        logger.info("client_tokens_revoked", client_id=client_id, count=count)
        return count

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    @staticmethod
    def _deletable(now: datetime) -> Any:
        return or_(Token.expires_at <= now, Token.is_revoked.is_(True))

    async def preview_cleanup(self) -> CleanupResult:
        """Counts cleanup_expired() would report, without writing anything."""
        now = self.clock()
        expired = await self.db.execute(
            select(func.count())
            .select_from(Token)
            .where(Token.is_revoked.is_(False), Token.expires_at <= now)
        )
        deletable = await self.db.execute(
            select(func.count()).select_from(Token).where(self._deletable(now))
        )
        lapsed = await self.db.execute(
            select(func.count())
            .select_from(RevokedAccessToken)
            .where(RevokedAccessToken.token_expires_at <= now)
        )
        return CleanupResult(
            expired_marked=expired.scalar_one(),
            deleted=deletable.scalar_one(),
            deny_list_purged=lapsed.scalar_one(),
        )

    async def cleanup_expired(self) -> CleanupResult:
        """
        Sweep stored tokens and the access deny list.

        1. Mark expired, non-revoked tokens as revoked.
        2. Delete every token that is revoked or expired.
        3. Purge deny-list entries whose access token has expired.

        Deny-list entries for unexpired access tokens stay, otherwise a logged
        out access token would validate again. Every statement is set-based
        and idempotent, so a concurrent logout between them is harmless.
        """
        now = self.clock()

        marked = await self.db.execute(
            update(Token)
            .where(Token.is_revoked.is_(False), Token.expires_at <= now)
            .values(is_revoked=True)
        )
        deleted = await self.db.execute(delete(Token).where(self._deletable(now)))
        purged = await self.db.execute(
            delete(RevokedAccessToken).where(RevokedAccessToken.token_expires_at <= now)
        )
        await self.db.commit()

        result = CleanupResult(
            expired_marked=marked.rowcount or 0,  # type: ignore[attr-defined]
            deleted=deleted.rowcount or 0,  # type: ignore[attr-defined]
            deny_list_purged=purged.rowcount or 0,  # type: ignore[attr-defined]
        )
        metrics.record_cleanup(result.expired_marked, result.deleted, result.deny_list_purged)
        logger.info(
            "expired_tokens_cleaned",
            expired_marked=result.expired_marked,
            deleted=result.deleted,
            deny_list_purged=result.deny_list_purged,
        )
        return result
