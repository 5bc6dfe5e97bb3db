"""
Pytest configuration and fixtures for the auth flows.
Provides an in-memory database, a controllable clock and a recording email
backend so codes can be read back from the "inbox".
"""
import os

# Settings are read once at import time, so they must be in place first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test_secret_key_for_testing_purposes_only_very_long_and_secure"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_BACKEND"] = "log"

import pytest
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from placement_auth import models  # noqa: F401
from placement_auth.dao.user_dao import UserDAO
from placement_auth.models.otp import OTPPurpose
from placement_auth.models.user import User, UserRole, UserStatus
from placement_auth.services.auth import get_password_hash
from placement_auth.services.auth_service import AuthService
from placement_auth.services.db import Base
from placement_auth.services.notifier import EmailDispatcher, EmailNotifier
from placement_auth.services.security import SecurityConfig
from placement_auth.services.tokens import TokenIssuer

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "TestPassword123!"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier(EmailNotifier):
    def __init__(self):
        self.sent = []

    async def send(self, email, code, purpose, ttl_minutes):
        self.sent.append({"email": email, "code": code, "purpose": purpose, "ttl_minutes": ttl_minutes})

    def last_code(self, email: str, purpose: OTPPurpose) -> str:
        for message in reversed(self.sent):
            if message["email"] == email and message["purpose"] == purpose:
                return message["code"]
        raise AssertionError(f"No {purpose.value} email sent to {email}")


class FailingNotifier(EmailNotifier):
    def __init__(self):
        self.attempts = 0

    async def send(self, email, code, purpose, ttl_minutes):
        self.attempts += 1
        raise ConnectionError("SMTP relay unavailable")


@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture
def config():
    return SecurityConfig()


@pytest.fixture
def issuer(config, clock):
    return TokenIssuer.from_config(config, clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return EmailDispatcher(notifier)


@pytest.fixture
def auth_service(db_session, config, dispatcher, issuer, clock):
    return AuthService(db_session, config, dispatcher, issuer=issuer, clock=clock)


async def create_user(db_session: AsyncSession, email: str, role: UserRole = UserRole.STUDENT,
                      status: UserStatus = UserStatus.ACTIVE, password: str = TEST_PASSWORD) -> User:
    user = User(
        email=email,
        password_hash=get_password_hash(password),
        role=role,
        status=status,
        email_verified=True,
    )
    return await UserDAO(db_session).create_user(user)


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create an active student account."""
    return await create_user(db_session, "testuser@example.com")


@pytest.fixture
async def blocked_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "blocked@example.com", status=UserStatus.BLOCKED)
