from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from placement_auth.models.refresh_token import RefreshToken

class RefreshTokenDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: int, token: str, expires_at: datetime) -> RefreshToken:
        record = RefreshToken(user_id=user_id, token=token, expires_at=expires_at)
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get_valid(self, token: str, now: datetime) -> Optional[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.token == token, RefreshToken.expires_at > now)
        )
        return result.scalars().first()

    async def delete_by_token(self, token: str) -> int:
        result = await self.db.execute(delete(RefreshToken).where(RefreshToken.token == token))
        await self.db.commit()
        return result.rowcount

    async def purge_expired(self, before: datetime) -> int:
        result = await self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at < before))
        await self.db.commit()
        return result.rowcount
