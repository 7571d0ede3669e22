"""
Two-Factor Service - TOTP enrolment, verification and single-use backup codes.

The candidate secret from generate_secret() is never persisted. The caller
holds it and sends it back with the first code to enable 2FA.
"""

import base64
import hashlib
import secrets
from collections.abc import Callable
from datetime import datetime
from io import BytesIO
from uuid import UUID

import pyotp
import qrcode
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import BackupCode, User, utc_now
from app.exceptions import (
    InvalidTwoFactorCodeError,
    NotFoundError,
    TwoFactorNotEnabledError,
    ValidationError,
)
from app.models.domain import TwoFactorSetup
from app.observability.metrics import metrics

logger = get_logger(__name__)


def hash_backup_code(code: str) -> str:
    """Backup codes are stored as SHA-256 of the normalised code."""
    return hashlib.sha256(code.strip().lower().encode()).hexdigest()


def generate_backup_codes(count: int) -> list[str]:
    """`count` distinct 8-character hex codes."""
    codes: set[str] = set()
    while len(codes) < count:
        codes.add(secrets.token_hex(4))
    return sorted(codes)


def qr_code_data_url(text: str) -> str:
    """Render `text` as a PNG QR code inside a data: URL."""
    image = qrcode.make(text)
    buf = BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TwoFactorService:
    """TOTP state machine: Disabled -> PendingEnable -> Enabled -> Disabled."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def generate_secret(self, email: str) -> TwoFactorSetup:
        """Create a candidate secret. Nothing is written to the database."""
        secret = pyotp.random_base32(length=32)
        otpauth_url = pyotp.TOTP(secret).provisioning_uri(
            name=email, issuer_name=settings.totp_issuer
        )
        return TwoFactorSetup(
            secret=secret,
            otpauth_url=otpauth_url,
            qr_code_url=qr_code_data_url(otpauth_url),
        )

    def verify_code(self, code: str, secret: str) -> bool:
        """True if `code` is valid for `secret` within the allowed drift window."""
        candidate = "".join(code.split())
        if not candidate.isdigit():
            return False
        try:
            return pyotp.TOTP(secret).verify(
                candidate, for_time=self.clock(), valid_window=settings.totp_valid_window
            )
        except (ValueError, TypeError):
            # Malformed base32 secret
            return False

    async def _get_user(self, user_id: UUID) -> User:
        stmt = select(User).where(User.id == user_id, User.deleted_at.is_(None))
        user = (await self.db.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def enable(self, user_id: UUID, secret: str, code: str) -> list[str]:
        """
        Confirm the candidate secret and switch 2FA on.

        Returns:
            The plaintext backup codes. They are shown once and stored hashed.

        Raises:
            InvalidTwoFactorCodeError: code does not match (state unchanged)
            NotFoundError: user does not exist
        """
        if not self.verify_code(code, secret):
            metrics.record_two_factor("enable", success=False)
            logger.info("two_factor_enable_rejected", user_id=str(user_id))
            raise InvalidTwoFactorCodeError()

        # Secret and flag change together in one statement
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.deleted_at.is_(None))
            .values(two_factor_enabled=True, two_factor_secret=secret)
        )
        if not result.rowcount:  # type: ignore[attr-defined]
            await self.db.rollback()
            raise NotFoundError("User", user_id)

        codes = generate_backup_codes(settings.backup_code_count)
        await self.db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        self.db.add_all(
            [BackupCode(user_id=user_id, code_hash=hash_backup_code(c), used=False) for c in codes]
        )
        await self.db.commit()

        metrics.record_two_factor("enable", success=True)
        logger.info("two_factor_enabled", user_id=str(user_id), backup_codes=len(codes))
        return codes

    async def disable(self, user_id: UUID, code: str | None = None) -> None:
        """
        Switch 2FA off and discard the secret and backup codes.

        A supplied code must verify. An omitted code is accepted unless
        two_factor_disable_requires_code is set.

        Raises:
            NotFoundError, TwoFactorNotEnabledError, InvalidTwoFactorCodeError,
            ValidationError (code required but missing)
        """
        user = await self._get_user(user_id)
        if not user.two_factor_enabled or not user.two_factor_secret:
            raise TwoFactorNotEnabledError(user_id)

        if code:
            if not self.verify_code(code, user.two_factor_secret):
                metrics.record_two_factor("disable", success=False)
                raise InvalidTwoFactorCodeError()
        elif settings.two_factor_disable_requires_code:
            raise ValidationError("A two-factor code is required to disable 2FA")

        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(two_factor_enabled=False, two_factor_secret=None)
        )
        await self.db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        await self.db.commit()

        logger.info("two_factor_disabled", user_id=str(user_id), code_supplied=bool(code))

    async def consume_backup_code(self, user_id: UUID, backup_code: str) -> bool:
        """
        Atomically mark a matching unused backup code as used.

        The `used = false` guard in the UPDATE makes a replay affect zero rows.
        """
        stmt = (
            update(BackupCode)
            .where(
                BackupCode.user_id == user_id,
                BackupCode.code_hash == hash_backup_code(backup_code),
                BackupCode.used.is_(False),
            )
            .values(used=True, used_at=self.clock())
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def verify_login(
        self,
        user_id: UUID,
        code: str | None = None,
        backup_code: str | None = None,
    ) -> User:
        """
        Second login step. Does not change the 2FA state.

        Raises:
            NotFoundError, TwoFactorNotEnabledError, InvalidTwoFactorCodeError
        """
        user = await self._get_user(user_id)
        if not user.two_factor_enabled or not user.two_factor_secret:
            raise TwoFactorNotEnabledError(user_id)

        if code:
            ok = self.verify_code(code, user.two_factor_secret)
            metrics.record_two_factor("totp", success=ok)
        elif backup_code:
            ok = await self.consume_backup_code(user_id, backup_code)
            metrics.record_two_factor("backup_code", success=ok)
            if ok:
                logger.info("backup_code_consumed", user_id=str(user_id))
        else:
            ok = False

        if not ok:
            logger.info("two_factor_login_rejected", user_id=str(user_id))
            raise InvalidTwoFactorCodeError()
        return user
