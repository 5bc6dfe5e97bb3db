"""
One-time code engine.

Issues, verifies and audits six-digit codes scoped by (email, purpose).
Expiry is evaluated lazily at verification time; nothing sweeps rows for
correctness.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging
import re
import secrets

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from placement_auth.dao.otp_dao import OTPDAO
from placement_auth.models.otp import OTPPurpose
from placement_auth.services.exceptions import InvalidOrExpiredCode, ValidationError
from placement_auth.services.security import SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"[0-9]{6}")

# Concurrent issue() calls for one pair race on the partial unique index
MAX_ISSUE_ATTEMPTS = 3


@dataclass
class IssuedCode:
    """A freshly stored code. ``code`` goes to the notifier, never to the HTTP caller."""
    code: str
    expires_at: datetime


def generate_code() -> str:
    """Uniform code in 000000-999999, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


class OTPEngine:
    def __init__(self, db: AsyncSession, config: SecurityConfig,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.dao = OTPDAO(db)
        self.config = config
        self.clock = clock or SecurityUtils.get_utc_now

    def ttl_for(self, purpose: OTPPurpose) -> timedelta:
        if purpose == OTPPurpose.VERIFY_EMAIL:
            return timedelta(minutes=self.config.otp_verify_email_ttl_minutes)
        return timedelta(minutes=self.config.otp_reset_password_ttl_minutes)

    async def issue(self, email: str, purpose: OTPPurpose) -> IssuedCode:
        """
        Supersede any unused code for the pair and store a new one.
        Invalidation and insertion commit together; a unique violation means a
        concurrent issue() won the race, in which case the whole step is retried
        so the last writer's code is the live one.
        """
        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            now = self.clock()
            expires_at = now + self.ttl_for(purpose)
            code = generate_code()
            try:
                superseded = await self.dao.invalidate_unused(email, purpose, now)
                await self.dao.add(email, code, purpose, expires_at=expires_at, created_at=now)
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning(
                    f"Concurrent OTP issue for {purpose.value} detected (attempt {attempt}/{MAX_ISSUE_ATTEMPTS})"
                )
                continue

            SecurityUtils.log_security_event(
                "otp_issued",
                {"purpose": purpose.value, "superseded": superseded, "expires_at": expires_at.isoformat()},
                user_email=email,
            )
            return IssuedCode(code=code, expires_at=expires_at)

        raise RuntimeError(f"Could not issue {purpose.value} code after {MAX_ISSUE_ATTEMPTS} attempts")

    async def verify(self, email: str, code: str, purpose: OTPPurpose) -> bool:
        """
        Consume a live code. Wrong, expired, superseded and already-used codes
        all fail with the same ``InvalidOrExpiredCode``.
        """
        if not code or not CODE_PATTERN.fullmatch(code):
            raise ValidationError("Code must be exactly 6 digits")

        now = self.clock()
        record = await self.dao.find_live(email, code, purpose, now)
        if record is None or not await self.dao.mark_used(record.id, used_at=now):
            SecurityUtils.log_security_event(
                "otp_verification_failed",
                {"purpose": purpose.value},
                user_email=email,
            )
            raise InvalidOrExpiredCode()

        SecurityUtils.log_security_event(
            "otp_verified",
            {"purpose": purpose.value, "otp_id": record.id},
            user_email=email,
        )
        return True

    async def was_recently_verified(self, email: str, purpose: OTPPurpose, window: timedelta) -> bool:
        """True if a code for the pair was verified (not merely superseded) within ``window``."""
        since = self.clock() - window
        record = await self.dao.find_recently_used(email, purpose, since)
        return record is not None

