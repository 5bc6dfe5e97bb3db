"""
Security configuration and shared security utilities.
Loads credential-lifecycle settings from the environment and provides
token generation, email normalization and security event logging.
"""
import os
import secrets
import string
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class SecurityConfig:
    """Centralized security configuration with validation."""

    def __init__(self):
        self.jwt_secret_key = self._get_or_generate_jwt_secret()
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_access_token_expire_minutes = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
        self.jwt_refresh_token_expire_days = int(os.getenv("JWT_REFRESH_TOKEN_EXPIRE_DAYS", "7"))

        # One-time codes
        self.otp_verify_email_ttl_minutes = int(os.getenv("OTP_VERIFY_EMAIL_TTL_MINUTES", "5"))
        self.otp_reset_password_ttl_minutes = int(os.getenv("OTP_RESET_PASSWORD_TTL_MINUTES", "10"))

        # Ephemeral tokens and the matching "recently verified" windows
        self.verification_token_ttl_minutes = int(os.getenv("VERIFICATION_TOKEN_TTL_MINUTES", "10"))
        self.reset_token_ttl_minutes = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "15"))
        self.email_verification_window_minutes = int(os.getenv("EMAIL_VERIFICATION_WINDOW_MINUTES", "10"))
        self.reset_verification_window_minutes = int(os.getenv("RESET_VERIFICATION_WINDOW_MINUTES", "15"))

        # Days used and expired codes are kept for audit; 0 keeps them forever
        self.otp_retention_days = int(os.getenv("OTP_RETENTION_DAYS", "30"))

        # Password policy
        self.password_min_length = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))
        self.bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "10"))

        # Flow policy
        self.require_email_verification = _env_bool("REQUIRE_EMAIL_VERIFICATION", "false")
        self.rotate_refresh_tokens = _env_bool("ROTATE_REFRESH_TOKENS", "false")

        # Rate limiting settings
        self.otp_send_limit_per_hour = int(os.getenv("OTP_SEND_LIMIT_PER_HOUR", "5"))
        self.rate_limit_login_attempts_per_hour = int(os.getenv("RATE_LIMIT_LOGIN_ATTEMPTS_PER_HOUR", "10"))
        self.account_lockout_attempts = int(os.getenv("ACCOUNT_LOCKOUT_ATTEMPTS", "5"))
        self.account_lockout_duration_minutes = int(os.getenv("ACCOUNT_LOCKOUT_DURATION_MINUTES", "30"))

        # Outbound email
        self.email_backend = os.getenv("EMAIL_BACKEND", "log").lower()
        self.email_from = os.getenv("EMAIL_FROM", "onboarding@resend.dev")
        self.resend_api_key = os.getenv("RESEND_API_KEY", "")

        self.enable_security_headers = _env_bool("ENABLE_SECURITY_HEADERS", "true")

        self._validate_config()

    def _get_or_generate_jwt_secret(self) -> str:
        """
        Get JWT secret from environment or generate a secure one.
        A generated secret does not survive restarts, so every outstanding token dies with the process.
        """
        secret = os.getenv("JWT_SECRET_KEY")

        if not secret:
            logger.warning("JWT_SECRET_KEY not found in environment. Generating secure random secret.")
            secret = self._generate_secure_secret()

        elif len(secret) < 32:
            logger.error("JWT_SECRET_KEY is too short! Must be at least 32 characters.")
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")

        elif secret in ["super-secret-key", "secret", "password", "key"]:
            logger.error("JWT_SECRET_KEY appears to be a default/weak value!")
            raise ValueError("JWT_SECRET_KEY cannot be a default or weak value")

        return secret

    def _generate_secure_secret(self, length: int = 64) -> str:
        """Generate cryptographically secure secret key."""
        alphabet = string.ascii_letters + string.digits + "!@#$%^&*()_+-="
        return ''.join(secrets.choice(alphabet) for _ in range(length))

    def _validate_config(self):
        """Validate security configuration for production readiness."""
        issues = []

        if self.jwt_algorithm not in ["HS256", "HS384", "HS512"]:
            issues.append(f"Unsupported JWT algorithm: {self.jwt_algorithm}")

        if self.jwt_access_token_expire_minutes > 60:
            issues.append("JWT access token expiration too long (>60 minutes) for production")

        if self.otp_retention_days < 0:
            issues.append("OTP_RETENTION_DAYS is negative; treated as 0 (codes kept forever)")

        if self.password_min_length < 6:
            issues.append("Password minimum length too short (<6 characters)")

        # The recency windows must cover the token lifetimes or a valid token is rejected
        if self.email_verification_window_minutes < self.verification_token_ttl_minutes:
            issues.append("Email verification window is shorter than the verification token lifetime")
        if self.reset_verification_window_minutes < self.reset_token_ttl_minutes:
            issues.append("Reset verification window is shorter than the reset token lifetime")

        if self.email_backend not in ["log", "resend"]:
            issues.append(f"Unknown EMAIL_BACKEND: {self.email_backend}")
        elif self.email_backend == "resend" and not self.resend_api_key:
            issues.append("EMAIL_BACKEND is 'resend' but RESEND_API_KEY is not set")

        if issues:
            logger.warning("Security configuration issues detected:")
            for issue in issues:
                logger.warning(f"  - {issue}")


class PasswordValidator:
    """Password policy check for registration and password updates."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    def validate_password(self, password: str) -> tuple[bool, list[str]]:
        """
        Validate password against security policy.
        Returns (is_valid, list_of_errors).
        """
        errors = []

        if not password or len(password) < self.config.password_min_length:
            errors.append(f"Password must be at least {self.config.password_min_length} characters long")

        # bcrypt silently truncates anything past 72 bytes
        if password and len(password.encode("utf-8")) > 72:
            errors.append("Password must be at most 72 bytes long")

        return len(errors) == 0, errors


class SecurityUtils:
    """Security utility functions."""

    @staticmethod
    def generate_secure_token(length: int = 32) -> str:
        """Generate cryptographically secure URL-safe token."""
        return secrets.token_urlsafe(length)

    @staticmethod
    def get_client_ip(request) -> str:
        """Extract client IP address handling proxies and load balancers."""
        forwarded_ips = request.headers.get("X-Forwarded-For")
        if forwarded_ips:
            return forwarded_ips.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    @staticmethod
    def sanitize_email(email: str) -> str:
        """Normalize an email address: lowercase, surrounding whitespace stripped."""
        if not email:
            return ""
        return email.lower().strip()

    @staticmethod
    def log_security_event(event_type: str, details: dict, user_email: Optional[str] = None,
                           client_ip: Optional[str] = None):
        """Log security events for monitoring and analysis."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "user_email": user_email,
            "client_ip": client_ip,
            "details": details
        }
        logger.info(f"SECURITY_EVENT: {log_entry}")

    @staticmethod
    def get_utc_now() -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)


# Global security configuration instance
security_config = SecurityConfig()
