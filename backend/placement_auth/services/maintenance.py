"""
Periodic storage hygiene. Expiry is enforced at verification time, so this
loop only keeps tables and in-memory limiter state from growing without bound.
"""
from datetime import timedelta
import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from placement_auth.dao.otp_dao import OTPDAO
from placement_auth.dao.refresh_token_dao import RefreshTokenDAO
from placement_auth.services.rate_limiter import InMemoryRateLimiter
from placement_auth.services.security import SecurityConfig, SecurityUtils, security_config

logger = logging.getLogger(__name__)


async def purge_expired_credentials(session_factory: async_sessionmaker,
                                    config: SecurityConfig = security_config) -> dict:
    """
    Delete expired refresh tokens, and codes that expired more than
    ``otp_retention_days`` ago. A retention of 0 keeps every code.
    """
    now = SecurityUtils.get_utc_now()
    codes = 0
    async with session_factory() as db:
        if config.otp_retention_days > 0:
            codes = await OTPDAO(db).purge_expired(now - timedelta(days=config.otp_retention_days))
        tokens = await RefreshTokenDAO(db).purge_expired(now)
    if codes or tokens:
        logger.info(f"Purged {codes} expired one-time codes and {tokens} expired refresh tokens")
    return {"one_time_codes": codes, "refresh_tokens": tokens}


async def maintenance_loop(session_factory: async_sessionmaker, limiter: InMemoryRateLimiter,
                           interval_seconds: int = 300, config: SecurityConfig = security_config):
    """Background task started from the app lifespan."""
    while True:
        try:
            await limiter.cleanup_expired()
            await purge_expired_credentials(session_factory, config)
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in maintenance loop: {e}")
            await asyncio.sleep(60)
