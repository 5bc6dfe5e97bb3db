from typing import Optional
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from placement_auth.models.user import User
from placement_auth.services.db import get_db
from placement_auth.services.exceptions import AuthError
from placement_auth.services.security import SecurityUtils, security_config
from placement_auth.services.sessions import SessionManager
from placement_auth.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=security_config.bcrypt_rounds,
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

_dummy_hash: Optional[str] = None


def _get_dummy_hash() -> str:
    """A real hash of a random secret, so unknown-user logins cost one full verify."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash(secrets.token_urlsafe(16))
    return _dummy_hash


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def get_password_hash(password: str) -> str:
    """Hash password using bcrypt."""
    return pwd_context.hash(password)


async def hash_password_async(password: str) -> str:
    return await run_in_threadpool(get_password_hash, password)


async def verify_password_secure(plain: str, hashed: Optional[str]) -> bool:
    """
    Verify in the threadpool. With no stored hash (unknown user) a dummy hash
    is checked instead so both outcomes take the same time, and the result is
    always False.
    """
    if not hashed:
        await run_in_threadpool(pwd_context.verify, plain, _get_dummy_hash())
        return False
    return await run_in_threadpool(pwd_context.verify, plain, hashed)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> User:
    """
    Resolve the bearer access token to a user.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    sessions = SessionManager(db, security_config, TokenIssuer.from_config(security_config))
    try:
        return await sessions.authenticate(token)
    except AuthError as e:
        SecurityUtils.log_security_event(
            "access_token_rejected",
            {"reason": type(e).__name__},
            client_ip=SecurityUtils.get_client_ip(request),
        )
        if e.status_code == status.HTTP_401_UNAUTHORIZED:
            raise credentials_exception
        raise HTTPException(status_code=e.status_code, detail=e.detail)
