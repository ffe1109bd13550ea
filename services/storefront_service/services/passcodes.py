"""One-time passcodes. Only a SHA-256 hash of the code is stored."""

import hashlib
import hmac
import secrets
import string
from datetime import timedelta

from libs.common.config import Settings
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import ValidationError
from services.storefront_service.models import OneTimePasscode, PasscodePurpose
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class PasscodeManager:
    def __init__(self, settings: Settings):
        self.ttl = timedelta(minutes=settings.OTP_TTL_MINUTES)
        self.length = settings.OTP_LENGTH

    async def issue(
        self, session: AsyncSession, email: str, purpose: PasscodePurpose
    ) -> str:
        """Create a fresh code; earlier unused codes for the same purpose lapse."""
        now = utc_now()
        email = email.lower()
        await session.execute(
            update(OneTimePasscode)
            .where(
                OneTimePasscode.email == email,
                OneTimePasscode.purpose == purpose,
                OneTimePasscode.consumed_at.is_(None),
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )

        code = "".join(secrets.choice(string.digits) for _ in range(self.length))
        session.add(
            OneTimePasscode(
                email=email,
                purpose=purpose,
                code_hash=hash_code(code),
                expires_at=now + self.ttl,
            )
        )
        await session.flush()
        return code

    async def consume(
        self,
        session: AsyncSession,
        email: str,
        purpose: PasscodePurpose,
        code: str,
    ) -> None:
        """Validate ``code`` and mark it used. Raises ValidationError otherwise."""
        result = await session.execute(
            select(OneTimePasscode)
            .where(
                OneTimePasscode.email == email.lower(),
                OneTimePasscode.purpose == purpose,
                OneTimePasscode.consumed_at.is_(None),
            )
            .order_by(OneTimePasscode.created_at.desc())
            .limit(1)
        )
        passcode = result.scalar_one_or_none()
        if passcode is None or not hmac.compare_digest(
            passcode.code_hash, hash_code(code)
        ):
            raise ValidationError("Invalid passcode", code="INVALID_PASSCODE")
        if utc_now() > ensure_aware(passcode.expires_at):
            raise ValidationError("Passcode has expired", code="INVALID_PASSCODE")

        claimed = await session.execute(
            update(OneTimePasscode)
            .where(
                OneTimePasscode.id == passcode.id,
                OneTimePasscode.consumed_at.is_(None),
            )
            .values(consumed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise ValidationError("Passcode has already been used", code="INVALID_PASSCODE")
