"""
Session issuance: short-lived stateless access tokens plus opaque refresh
tokens persisted server-side.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from placement_auth.dao.refresh_token_dao import RefreshTokenDAO
from placement_auth.dao.user_dao import UserDAO
from placement_auth.models.user import User, UserStatus
from placement_auth.services.exceptions import (
    AccountBlocked, InvalidAccessToken, InvalidRefreshToken, InvalidToken,
)
from placement_auth.services.security import SecurityConfig, SecurityUtils
from placement_auth.services.tokens import PURPOSE_ACCESS, TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str


@dataclass
class RefreshedSession:
    access_token: str
    # Only set when refresh-token rotation is enabled
    refresh_token: Optional[str] = None


class SessionManager:
    def __init__(self, db: AsyncSession, config: SecurityConfig, issuer: TokenIssuer,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.issuer = issuer
        self.clock = clock or SecurityUtils.get_utc_now
        self.refresh_tokens = RefreshTokenDAO(db)
        self.users = UserDAO(db)

    def create_access_token(self, user_id: int) -> str:
        return self.issuer.mint(
            {"sub": str(user_id)},
            PURPOSE_ACCESS,
            timedelta(minutes=self.config.jwt_access_token_expire_minutes),
        )

    async def _store_refresh_token(self, user_id: int) -> str:
        token = SecurityUtils.generate_secure_token(48)
        expires_at = self.clock() + timedelta(days=self.config.jwt_refresh_token_expire_days)
        await self.refresh_tokens.create(user_id, token, expires_at)
        return token

    async def issue_session(self, user_id: int) -> SessionTokens:
        return SessionTokens(
            access_token=self.create_access_token(user_id),
            refresh_token=await self._store_refresh_token(user_id),
        )

    async def refresh(self, refresh_token: str) -> RefreshedSession:
        if not refresh_token:
            raise InvalidRefreshToken()

        record = await self.refresh_tokens.get_valid(refresh_token, self.clock())
        if record is None:
            raise InvalidRefreshToken()

        user = await self.users.get_by_id(record.user_id)
        if user is None:
            raise InvalidRefreshToken()
        if user.status == UserStatus.BLOCKED:
            SecurityUtils.log_security_event(
                "blocked_user_refresh_attempt", {"user_id": user.id}, user_email=user.email
            )
            raise AccountBlocked()

        refreshed = RefreshedSession(access_token=self.create_access_token(user.id))
        if self.config.rotate_refresh_tokens:
            # A concurrent refresh with the same token may already have deleted it
            if await self.refresh_tokens.delete_by_token(refresh_token) != 1:
                raise InvalidRefreshToken()
            refreshed.refresh_token = await self._store_refresh_token(user.id)
        return refreshed

    async def revoke(self, refresh_token: str) -> None:
        """Delete the token. Absent tokens are ignored."""
        if refresh_token:
            deleted = await self.refresh_tokens.delete_by_token(refresh_token)
            logger.debug(f"Revoked {deleted} refresh token(s)")

    async def authenticate(self, access_token: str) -> User:
        """Resolve a bearer access token to an active user."""
        try:
            claims = self.issuer.verify(access_token, PURPOSE_ACCESS)
            user_id = int(claims["sub"])
        except (InvalidToken, KeyError, ValueError):
            raise InvalidAccessToken()

        user = await self.users.get_by_id(user_id)
        if user is None:
            raise InvalidAccessToken()
        if user.status == UserStatus.BLOCKED:
            raise AccountBlocked()
        return user

