from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from placement_auth.models.user import User, UserRole, StudentProfile, RecruiterProfile, AdminProfile

class UserDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def create_user(self, user: User, profile: Optional[dict] = None) -> User:
        """Insert the user and its role-specific profile row in one transaction."""
        profile = profile or {}
        try:
            self.db.add(user)
            await self.db.flush()
            self.db.add(self._build_profile(user, profile))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(user)
        return user

    def _build_profile(self, user: User, profile: dict):
        if user.role == UserRole.STUDENT:
            enrollment_id = (profile.get("enrollment_id") or "").strip() or None
            return StudentProfile(
                user_id=user.id,
                full_name=profile.get("full_name") or user.email,
                email=user.email,
                phone=profile.get("phone") or "",
                enrollment_id=enrollment_id,
                school=profile.get("school") or "",
                center=profile.get("center") or "",
                batch=profile.get("batch") or "",
            )
        if user.role == UserRole.RECRUITER:
            return RecruiterProfile(
                user_id=user.id,
                company_name=profile.get("company_name"),
                location=profile.get("location"),
            )
        return AdminProfile(user_id=user.id, name=profile.get("name") or user.email)

    async def update_last_login(self, user_id: int, when: datetime):
        await self.db.execute(update(User).where(User.id == user_id).values(last_login_at=when))
        await self.db.commit()

    async def update_password(self, user_id: int, password_hash: str):
        await self.db.execute(update(User).where(User.id == user_id).values(password_hash=password_hash))
        await self.db.commit()
