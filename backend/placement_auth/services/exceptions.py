"""
Authentication error taxonomy.

Every failure the auth flows can signal to a caller is an ``AuthError``
subclass carrying the HTTP status the router answers with and a public
message. Enumeration-sensitive paths reuse one class for several internal
causes, so the detail text never reveals which check failed.
"""
from typing import Optional


class AuthError(Exception):
    """Base class for user-facing authentication failures."""

    status_code = 400
    detail = "Authentication request failed"

    def __init__(self, detail: Optional[str] = None, errors: Optional[list] = None):
        self.detail = detail or self.detail
        self.errors = errors or []
        super().__init__(self.detail)


class ValidationError(AuthError):
    detail = "Invalid request"


class InvalidOrExpiredCode(AuthError):
    detail = "Invalid or expired code"


class InvalidCredentials(AuthError):
    status_code = 401
    detail = "Invalid credentials"


class AccountBlocked(AuthError):
    status_code = 403
    detail = "Account is blocked"


class RoleMismatch(AuthError):
    status_code = 403
    detail = "Invalid role for this account"


class EmailAlreadyRegistered(AuthError):
    detail = "Email already registered"


class EmailVerificationRequired(AuthError):
    detail = "Email verification required. Please verify OTP first."


class ResetVerificationRequired(AuthError):
    detail = "Reset code verification required. Please verify OTP first."


class InvalidToken(AuthError):
    detail = "Invalid or expired token"


class InvalidRefreshToken(AuthError):
    status_code = 401
    detail = "Invalid or expired refresh token"


class InvalidAccessToken(AuthError):
    status_code = 401
    detail = "Invalid authentication credentials"


class TooManyRequests(AuthError):
    status_code = 429
    detail = "Too many requests. Please try again later."

    def __init__(self, detail: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(detail)
        self.retry_after = retry_after
