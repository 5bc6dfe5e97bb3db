"""
In-memory throttling for the auth endpoints.
Limits how often a code can be sent to one address and locks out clients
after repeated failed logins.
"""
import asyncio
from typing import Dict, Optional, Tuple
from datetime import datetime, timedelta, timezone
from collections import defaultdict, deque
from dataclasses import dataclass
import logging

from placement_auth.services.security import SecurityConfig, SecurityUtils, security_config

logger = logging.getLogger(__name__)

@dataclass
class RateLimitResult:
    """Result of rate limit check."""
    allowed: bool
    remaining: int
    reset_time: datetime
    retry_after: Optional[int] = None

class InMemoryRateLimiter:
    """
    In-memory rate limiter. State is per process, so with several app
    instances each one enforces its own share of the limits.
    """

    def __init__(self, config: SecurityConfig = security_config):
        self.config = config
        # Structure: {client_key: deque([timestamp1, timestamp2, ...])}
        self._requests: Dict[str, deque] = defaultdict(deque)
        # Structure: {client_key: (attempt_count, last_attempt)}
        self._failed_attempts: Dict[str, Tuple[int, datetime]] = {}
        # Structure: {client_key: lockout_until_timestamp}
        self._lockouts: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def check_rate_limit(self, client_key: str, window_seconds: int = 60,
                               max_requests: int = 60) -> RateLimitResult:
        """
        Sliding-window check that also records the request when allowed.

        Args:
            client_key: Unique identifier for the client (IP, email, etc.)
            window_seconds: Time window in seconds
            max_requests: Maximum requests allowed in window
        """
        async with self._lock:
            now = datetime.now(timezone.utc)
            window_start = now - timedelta(seconds=window_seconds)

            client_requests = self._requests[client_key]
            while client_requests and client_requests[0] < window_start:
                client_requests.popleft()

            current_requests = len(client_requests)
            remaining = max(0, max_requests - current_requests)

            if current_requests >= max_requests:
                reset_time = client_requests[0] + timedelta(seconds=window_seconds)
                retry_after = max(1, int((reset_time - now).total_seconds()))

                SecurityUtils.log_security_event(
                    "rate_limit_exceeded",
                    {
                        "client_key": client_key,
                        "current_requests": current_requests,
                        "max_requests": max_requests,
                        "window_seconds": window_seconds
                    }
                )

                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=retry_after
                )

            client_requests.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=remaining - 1,
                reset_time=now + timedelta(seconds=window_seconds)
            )

    async def check_otp_send(self, email: str, purpose: str) -> RateLimitResult:
        """Limit code emails per address and purpose."""
        return await self.check_rate_limit(
            f"otp:{purpose}:{email}",
            window_seconds=3600,
            max_requests=self.config.otp_send_limit_per_hour
        )

    async def check_login_attempts(self, client_key: str) -> RateLimitResult:
        return await self.check_rate_limit(
            f"login:{client_key}",
            window_seconds=3600,
            max_requests=self.config.rate_limit_login_attempts_per_hour
        )

    async def record_failed_login(self, client_key: str, email: str = None) -> bool:
        """
        Record a failed login attempt.

        Returns:
            True if the client is now locked out
        """
        async with self._lock:
            now = datetime.now(timezone.utc)

            if client_key in self._failed_attempts:
                count, last_attempt = self._failed_attempts[client_key]
                # Reset counter if last attempt was more than 1 hour ago
                if now - last_attempt > timedelta(hours=1):
                    count = 0
                count += 1
            else:
                count = 1

            self._failed_attempts[client_key] = (count, now)

            if count >= self.config.account_lockout_attempts:
                lockout_until = now + timedelta(minutes=self.config.account_lockout_duration_minutes)
                self._lockouts[client_key] = lockout_until

                SecurityUtils.log_security_event(
                    "ip_lockout_triggered",
                    {
                        "client_key": client_key,
                        "failed_attempts": count,
                        "lockout_until": lockout_until.isoformat()
                    },
                    user_email=email
                )
                return True

            return False

    async def is_locked_out(self, client_key: str) -> Tuple[bool, Optional[datetime]]:
        """
        Returns:
            (is_locked, lockout_until_time)
        """
        async with self._lock:
            if client_key not in self._lockouts:
                return False, None

            lockout_until = self._lockouts[client_key]
            if datetime.now(timezone.utc) >= lockout_until:
                del self._lockouts[client_key]
                self._failed_attempts.pop(client_key, None)
                return False, None

            return True, lockout_until

    async def reset_failed_attempts(self, client_key: str):
        """Reset failed attempts for client (after successful login)."""
        async with self._lock:
            self._failed_attempts.pop(client_key, None)
            self._lockouts.pop(client_key, None)

    async def cleanup_expired(self):
        """Drop stale entries. Called periodically from the app lifespan."""
        async with self._lock:
            now = datetime.now(timezone.utc)

            cutoff = now - timedelta(hours=1)
            for client_key, requests in list(self._requests.items()):
                while requests and requests[0] < cutoff:
                    requests.popleft()
                if not requests:
                    del self._requests[client_key]

            expired_lockouts = [
                key for key, lockout_time in self._lockouts.items()
                if now >= lockout_time
            ]
            for key in expired_lockouts:
                del self._lockouts[key]
                self._failed_attempts.pop(key, None)

# Global rate limiter instance
rate_limiter = InMemoryRateLimiter()

def get_rate_limiter() -> InMemoryRateLimiter:
    """Get the global rate limiter instance."""
    return rate_limiter
