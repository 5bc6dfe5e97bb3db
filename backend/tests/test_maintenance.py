"""
Tests for the periodic purge of expired codes and refresh tokens.
"""
from datetime import timedelta
from sqlalchemy import select

from placement_auth.dao.otp_dao import OTPDAO
from placement_auth.dao.refresh_token_dao import RefreshTokenDAO
from placement_auth.models.otp import OneTimeCode, OTPPurpose
from placement_auth.models.refresh_token import RefreshToken
from placement_auth.services.maintenance import purge_expired_credentials
from placement_auth.services.security import SecurityUtils


async def add_codes(db_session, retention_days: int):
    now = SecurityUtils.get_utc_now()
    long_ago = now - timedelta(days=retention_days + 1)
    otp = OTPDAO(db_session)
    await otp.add("old@x.com", "111111", OTPPurpose.VERIFY_EMAIL, expires_at=long_ago, created_at=long_ago)
    await otp.add("new@x.com", "222222", OTPPurpose.VERIFY_EMAIL,
                  expires_at=now - timedelta(minutes=1), created_at=now - timedelta(minutes=6))
    await db_session.commit()


async def test_purge_keeps_recent_rows(session_factory, db_session, config, test_user):
    await add_codes(db_session, config.otp_retention_days)
    now = SecurityUtils.get_utc_now()
    tokens = RefreshTokenDAO(db_session)
    await tokens.create(test_user.id, "expired-token", now - timedelta(seconds=1))
    await tokens.create(test_user.id, "live-token", now + timedelta(days=7))

    counts = await purge_expired_credentials(session_factory, config)
    assert counts == {"one_time_codes": 1, "refresh_tokens": 1}

    db_session.expunge_all()
    emails = (await db_session.execute(select(OneTimeCode.email))).scalars().all()
    assert emails == ["new@x.com"]
    remaining = (await db_session.execute(select(RefreshToken.token))).scalars().all()
    assert remaining == ["live-token"]


async def test_zero_retention_keeps_every_code(session_factory, db_session, config):
    await add_codes(db_session, 30)
    config.otp_retention_days = 0

    counts = await purge_expired_credentials(session_factory, config)
    assert counts["one_time_codes"] == 0

    db_session.expunge_all()
    emails = (await db_session.execute(select(OneTimeCode.email).order_by(OneTimeCode.email))).scalars().all()
    assert emails == ["new@x.com", "old@x.com"]
