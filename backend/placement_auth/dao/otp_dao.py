from datetime import datetime
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from placement_auth.models.otp import OneTimeCode, OTPPurpose

class OTPDAO:
    """
    Storage for one-time codes. Methods that change rows do not commit unless
    stated, so callers can group several of them into one transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def invalidate_unused(self, email: str, purpose: OTPPurpose, now: datetime) -> int:
        """
        Retire every unused code for (email, purpose) ahead of a new one.
        Live codes are stamped ``superseded_at``; codes that had already expired
        are only marked used. Returns the number of live codes superseded.
        """
        unused = (
            OneTimeCode.email == email,
            OneTimeCode.purpose == purpose,
            OneTimeCode.is_used.is_(False),
        )
        superseded = await self.db.execute(
            update(OneTimeCode)
            .where(*unused, OneTimeCode.expires_at > now)
            .values(is_used=True, superseded_at=now)
            .execution_options(synchronize_session="fetch")
        )
        # Expired rows must leave the unused state too, or the partial unique index blocks the insert
        await self.db.execute(
            update(OneTimeCode)
            .where(*unused, OneTimeCode.expires_at <= now)
            .values(is_used=True)
            .execution_options(synchronize_session="fetch")
        )
        return superseded.rowcount

    async def add(self, email: str, code: str, purpose: OTPPurpose,
                  expires_at: datetime, created_at: datetime) -> OneTimeCode:
        record = OneTimeCode(
            email=email,
            code=code,
            purpose=purpose,
            expires_at=expires_at,
            created_at=created_at,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def find_live(self, email: str, code: str, purpose: OTPPurpose,
                        now: datetime) -> Optional[OneTimeCode]:
        """Most recent unused, unexpired code matching exactly."""
        result = await self.db.execute(
            select(OneTimeCode)
            .where(
                OneTimeCode.email == email,
                OneTimeCode.code == code,
                OneTimeCode.purpose == purpose,
                OneTimeCode.is_used.is_(False),
                OneTimeCode.expires_at > now,
            )
            .order_by(OneTimeCode.created_at.desc(), OneTimeCode.id.desc())
        )
        return result.scalars().first()

    async def mark_used(self, record_id: int, used_at: datetime) -> bool:
        """
        Consume a code. The ``is_used`` guard makes this a compare-and-set, so
        of two concurrent verifications only one sees a row updated.
        """
        result = await self.db.execute(
            update(OneTimeCode)
            .where(OneTimeCode.id == record_id, OneTimeCode.is_used.is_(False))
            .values(is_used=True, used_at=used_at)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def find_recently_used(self, email: str, purpose: OTPPurpose,
                                 since: datetime) -> Optional[OneTimeCode]:
        result = await self.db.execute(
            select(OneTimeCode)
            .where(
                OneTimeCode.email == email,
                OneTimeCode.purpose == purpose,
                OneTimeCode.is_used.is_(True),
                OneTimeCode.used_at.is_not(None),
                OneTimeCode.used_at > since,
            )
            .order_by(OneTimeCode.created_at.desc(), OneTimeCode.id.desc())
        )
        return result.scalars().first()

    async def count_live(self, email: str, purpose: OTPPurpose, now: datetime) -> int:
        result = await self.db.execute(
            select(OneTimeCode.id).where(
                OneTimeCode.email == email,
                OneTimeCode.purpose == purpose,
                OneTimeCode.is_used.is_(False),
                OneTimeCode.expires_at > now,
            )
        )
        return len(result.scalars().all())

    async def purge_expired(self, before: datetime) -> int:
        """Delete codes that expired before ``before``. Commits."""
        result = await self.db.execute(delete(OneTimeCode).where(OneTimeCode.expires_at < before))
        await self.db.commit()
        return result.rowcount
