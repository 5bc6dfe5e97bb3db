"""
The OTP-gated authentication flows.

Registration:   send_otp -> verify_otp (verification token) -> register
Login:          login -> refresh / logout
Password reset: reset_password -> verify_reset_otp (reset token) -> update_password

There is no persisted flow-state object. Each step reconstructs where the
flow stands from OTP rows and the signed tokens handed back by the previous
step.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from placement_auth.dao.user_dao import UserDAO
from placement_auth.models.otp import OTPPurpose
from placement_auth.models.user import User, UserRole, UserStatus
from placement_auth.services.auth import (
    hash_password_async, verify_password_secure,
)
from placement_auth.services.exceptions import (
    AccountBlocked, EmailAlreadyRegistered, EmailVerificationRequired, InvalidCredentials,
    InvalidOrExpiredCode, InvalidToken, ResetVerificationRequired, RoleMismatch, ValidationError,
)
from placement_auth.services.notifier import EmailDispatcher
from placement_auth.services.otp import CODE_PATTERN, OTPEngine
from placement_auth.services.security import PasswordValidator, SecurityConfig, SecurityUtils
from placement_auth.services.sessions import RefreshedSession, SessionManager
from placement_auth.services.tokens import PURPOSE_PASSWORD_RESET, PURPOSE_VERIFICATION, TokenIssuer

logger = logging.getLogger(__name__)

OTP_STATUS_PENDING = "PENDING_VERIFICATION"


@dataclass
class OtpDispatch:
    otp_expires_at: datetime
    expires_in: int
    message: str
    otp_status: str = OTP_STATUS_PENDING
    success: bool = True


@dataclass
class VerifiedOtp:
    email: str
    verification_token: str
    verified: bool = True


@dataclass
class ResetTokenGrant:
    email: str
    reset_token: str
    verified: bool = True


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: str


def parse_role(role: Union[str, UserRole, None]) -> Optional[UserRole]:
    if role is None or isinstance(role, UserRole):
        return role
    try:
        return UserRole(str(role).upper())
    except ValueError:
        raise ValidationError(f"Role must be one of {', '.join(r.value for r in UserRole)}")


class AuthService:
    def __init__(self, db: AsyncSession, config: SecurityConfig, dispatcher: EmailDispatcher,
                 issuer: Optional[TokenIssuer] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.clock = clock or SecurityUtils.get_utc_now
        self.dispatcher = dispatcher
        self.password_validator = PasswordValidator(config)
        self.issuer = issuer or TokenIssuer.from_config(config, clock=self.clock)
        self.users = UserDAO(db)
        self.otp = OTPEngine(db, config, clock=self.clock)
        self.sessions = SessionManager(db, config, self.issuer, clock=self.clock)

    def _normalize_email(self, email: str) -> str:
        email = SecurityUtils.sanitize_email(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        return email

    def _check_password(self, password: str):
        is_valid, errors = self.password_validator.validate_password(password)
        if not is_valid:
            raise ValidationError("Password does not meet security requirements", errors=errors)

    def _check_code_format(self, code: str):
        if not code or not CODE_PATTERN.fullmatch(code):
            raise ValidationError("Code must be exactly 6 digits")

    async def _issue_and_dispatch(self, email: str, purpose: OTPPurpose, message: str) -> OtpDispatch:
        issued = await self.otp.issue(email, purpose)
        ttl = self.otp.ttl_for(purpose)
        # Fire and forget: the row is committed, the response does not wait on delivery
        self.dispatcher.dispatch(email, issued.code, purpose, int(ttl.total_seconds() // 60))
        return OtpDispatch(
            otp_expires_at=issued.expires_at,
            expires_in=int(ttl.total_seconds()),
            message=message,
        )

    # Registration

    async def send_otp(self, email: str) -> OtpDispatch:
        email = self._normalize_email(email)
        if await self.users.get_by_email(email):
            SecurityUtils.log_security_event("otp_requested_for_registered_email", {}, user_email=email)
            raise EmailAlreadyRegistered()
        return await self._issue_and_dispatch(
            email, OTPPurpose.VERIFY_EMAIL, "OTP sent to your email. Please check your inbox."
        )

    async def verify_otp(self, email: str, code: str) -> VerifiedOtp:
        email = self._normalize_email(email)
        await self.otp.verify(email, code, OTPPurpose.VERIFY_EMAIL)
        token = self.issuer.mint(
            {"sub": email},
            PURPOSE_VERIFICATION,
            timedelta(minutes=self.config.verification_token_ttl_minutes),
        )
        return VerifiedOtp(email=email, verification_token=token)

    async def _check_verification_token(self, email: str, verification_token: str):
        try:
            claims = self.issuer.verify(verification_token, PURPOSE_VERIFICATION)
        except InvalidToken:
            raise EmailVerificationRequired("Invalid verification token. Please verify OTP first.")

        if claims.get("sub") != email:
            SecurityUtils.log_security_event("verification_token_email_mismatch", {}, user_email=email)
            raise EmailVerificationRequired("Email verification failed")

        # The token alone is not enough: the used OTP row must agree
        window = timedelta(minutes=self.config.email_verification_window_minutes)
        if not await self.otp.was_recently_verified(email, OTPPurpose.VERIFY_EMAIL, window):
            raise EmailVerificationRequired()

    async def register(self, email: str, password: str, role: Union[str, UserRole],
                       verification_token: Optional[str] = None,
                       profile: Optional[dict] = None) -> AuthResult:
        """
        Create an account and open a session.

        Without a verification token the account is created unverified, unless
        the deployment sets ``require_email_verification``.
        """
        email = self._normalize_email(email)
        self._check_password(password)
        role = parse_role(role)
        if role is None:
            raise ValidationError("Role is required")

        email_verified = False
        email_verified_at = None
        if verification_token:
            await self._check_verification_token(email, verification_token)
            email_verified = True
            email_verified_at = self.clock()
        elif self.config.require_email_verification:
            raise EmailVerificationRequired()

        if await self.users.get_by_email(email):
            SecurityUtils.log_security_event("duplicate_registration_attempt", {}, user_email=email)
            raise EmailAlreadyRegistered()

        user = User(
            email=email,
            password_hash=await hash_password_async(password),
            role=role,
            status=UserStatus.PENDING if role == UserRole.RECRUITER else UserStatus.ACTIVE,
            email_verified=email_verified,
            email_verified_at=email_verified_at,
        )
        try:
            user = await self.users.create_user(user, profile)
        except IntegrityError:
            if await self.users.get_by_email(email):
                # Lost a race with a concurrent registration for the same email
                raise EmailAlreadyRegistered()
            # The only other unique profile column
            SecurityUtils.log_security_event("duplicate_enrollment_id", {}, user_email=email)
            raise ValidationError("Enrollment ID is already registered")

        tokens = await self.sessions.issue_session(user.id)
        SecurityUtils.log_security_event(
            "user_registration_success",
            {"user_id": user.id, "role": role.value, "email_verified": email_verified},
            user_email=email,
        )
        return AuthResult(user=user, access_token=tokens.access_token, refresh_token=tokens.refresh_token)

    # Login and sessions

    async def login(self, email: str, password: str, role: Union[str, UserRole, None] = None,
                    client_ip: Optional[str] = None) -> AuthResult:
        email = SecurityUtils.sanitize_email(email)
        expected_role = parse_role(role)

        user = await self.users.get_by_email(email) if email else None
        password_ok = await verify_password_secure(password or "", user.password_hash if user else None)
        if user is None or not password_ok:
            SecurityUtils.log_security_event(
                "failed_login_user_not_found" if user is None else "failed_login_wrong_password",
                {},
                user_email=email,
                client_ip=client_ip,
            )
            raise InvalidCredentials()

        if expected_role is not None and user.role != expected_role:
            SecurityUtils.log_security_event(
                "login_role_mismatch",
                {"user_id": user.id, "expected_role": expected_role.value},
                user_email=email,
                client_ip=client_ip,
            )
            raise RoleMismatch()

        if user.status == UserStatus.BLOCKED:
            SecurityUtils.log_security_event(
                "login_attempt_blocked_user", {"user_id": user.id}, user_email=email, client_ip=client_ip
            )
            raise AccountBlocked()

        await self.users.update_last_login(user.id, self.clock())
        tokens = await self.sessions.issue_session(user.id)
        SecurityUtils.log_security_event(
            "successful_login", {"user_id": user.id}, user_email=email, client_ip=client_ip
        )
        return AuthResult(user=user, access_token=tokens.access_token, refresh_token=tokens.refresh_token)

    async def refresh(self, refresh_token: str) -> RefreshedSession:
        return await self.sessions.refresh(refresh_token)

    async def logout(self, refresh_token: Optional[str]) -> bool:
        await self.sessions.revoke(refresh_token)
        return True

    # Password reset

    async def reset_password(self, email: str) -> OtpDispatch:
        """
        Answers with the same shape whether or not the account exists. For
        unknown addresses no row is written and the expiry is synthesized.
        """
        email = self._normalize_email(email)
        message = "If email exists, password reset OTP sent"

        user = await self.users.get_by_email(email)
        if user is None:
            SecurityUtils.log_security_event("password_reset_unknown_email", {}, user_email=email)
            ttl = self.otp.ttl_for(OTPPurpose.RESET_PASSWORD)
            return OtpDispatch(
                otp_expires_at=self.clock() + ttl,
                expires_in=int(ttl.total_seconds()),
                message=message,
            )

        SecurityUtils.log_security_event("password_reset_requested", {"user_id": user.id}, user_email=email)
        return await self._issue_and_dispatch(user.email, OTPPurpose.RESET_PASSWORD, message)

    async def verify_reset_otp(self, email: str, code: str) -> ResetTokenGrant:
        email = self._normalize_email(email)
        self._check_code_format(code)

        user = await self.users.get_by_email(email)
        if user is None:
            raise InvalidOrExpiredCode()
        await self.otp.verify(user.email, code, OTPPurpose.RESET_PASSWORD)

        token = self.issuer.mint(
            {"email": user.email, "user_id": user.id},
            PURPOSE_PASSWORD_RESET,
            timedelta(minutes=self.config.reset_token_ttl_minutes),
        )
        return ResetTokenGrant(email=user.email, reset_token=token)

    async def update_password(self, reset_token: str, new_password: str) -> bool:
        # Policy first: a rejected password leaves the reset window untouched
        self._check_password(new_password)

        claims = self.issuer.verify(reset_token, PURPOSE_PASSWORD_RESET)
        email = claims.get("email")
        user = await self.users.get_by_email(email) if email else None
        if user is None or user.id != claims.get("user_id"):
            raise InvalidToken()

        window = timedelta(minutes=self.config.reset_verification_window_minutes)
        if not await self.otp.was_recently_verified(user.email, OTPPurpose.RESET_PASSWORD, window):
            raise ResetVerificationRequired()

        await self.users.update_password(user.id, await hash_password_async(new_password))
        SecurityUtils.log_security_event("password_updated", {"user_id": user.id}, user_email=user.email)
        return True

