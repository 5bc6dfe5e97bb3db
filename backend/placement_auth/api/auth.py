from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from placement_auth.models.otp import OTPPurpose
from placement_auth.models.user import User
from placement_auth.schemas.otp import (
    EmailRequest, MessageResponse, OtpDispatchResponse, UpdatePasswordRequest,
    VerifyCodeRequest, VerifyOtpResponse, VerifyResetOtpResponse,
)
from placement_auth.schemas.user import (
    AuthResponse, LoginRequest, LogoutRequest, RefreshTokenRequest, RegisterRequest,
    TokenRefreshResponse, UserOut,
)
from placement_auth.services.auth import get_current_user
from placement_auth.services.auth_service import AuthService
from placement_auth.services.db import get_db
from placement_auth.services.exceptions import AuthError, TooManyRequests
from placement_auth.services.notifier import EmailDispatcher, get_email_dispatcher
from placement_auth.services.rate_limiter import InMemoryRateLimiter, get_rate_limiter
from placement_auth.services.security import SecurityUtils, security_config

logger = logging.getLogger(__name__)

router = APIRouter()


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
) -> AuthService:
    return AuthService(db, security_config, dispatcher)


def to_http(exc: AuthError) -> HTTPException:
    detail = {"message": exc.detail, "errors": exc.errors} if exc.errors else exc.detail
    headers = None
    if isinstance(exc, TooManyRequests) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=detail, headers=headers)


async def enforce_otp_send_limit(limiter: InMemoryRateLimiter, email: str, purpose: OTPPurpose):
    result = await limiter.check_otp_send(SecurityUtils.sanitize_email(email), purpose.value)
    if not result.allowed:
        raise TooManyRequests("Too many codes requested. Please try again later.", retry_after=result.retry_after)


def auth_response(result) -> AuthResponse:
    return AuthResponse(
        user=UserOut.model_validate(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.post("/send-otp", response_model=OtpDispatchResponse)
async def send_otp(data: EmailRequest, service: AuthService = Depends(get_auth_service),
                   limiter: InMemoryRateLimiter = Depends(get_rate_limiter)):
    """Send a registration code. Responds before the email is delivered."""
    try:
        await enforce_otp_send_limit(limiter, data.email, OTPPurpose.VERIFY_EMAIL)
        result = await service.send_otp(data.email)
    except AuthError as e:
        raise to_http(e)
    return OtpDispatchResponse(**vars(result))


@router.post("/verify-otp", response_model=VerifyOtpResponse)
async def verify_otp(data: VerifyCodeRequest, service: AuthService = Depends(get_auth_service)):
    try:
        result = await service.verify_otp(data.email, data.otp)
    except AuthError as e:
        raise to_http(e)
    return VerifyOtpResponse(**vars(result))


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    profile = data.profile.model_dump(exclude_none=True) if data.profile else None
    try:
        result = await service.register(
            data.email, data.password, data.role,
            verification_token=data.verification_token,
            profile=profile,
        )
    except AuthError as e:
        raise to_http(e)
    return auth_response(result)


@router.post("/login", response_model=AuthResponse)
async def login(data: LoginRequest, request: Request, service: AuthService = Depends(get_auth_service),
                limiter: InMemoryRateLimiter = Depends(get_rate_limiter)):
    client_ip = SecurityUtils.get_client_ip(request)

    is_locked, lockout_until = await limiter.is_locked_out(client_ip)
    if is_locked:
        SecurityUtils.log_security_event(
            "login_attempt_during_lockout",
            {"lockout_until": lockout_until.isoformat()},
            user_email=data.email,
            client_ip=client_ip
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Account temporarily locked due to too many failed attempts"
        )

    rate = await limiter.check_login_attempts(client_ip)
    if not rate.allowed:
        raise to_http(TooManyRequests("Too many login attempts. Please try again later.",
                                      retry_after=rate.retry_after))

    try:
        result = await service.login(
            data.email, data.password, role=data.selected_role or data.role, client_ip=client_ip
        )
    except AuthError as e:
        if e.status_code == status.HTTP_401_UNAUTHORIZED:
            await limiter.record_failed_login(client_ip, data.email)
        raise to_http(e)

    await limiter.reset_failed_attempts(client_ip)
    return auth_response(result)


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh(data: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)):
    try:
        result = await service.refresh(data.refresh_token)
    except AuthError as e:
        raise to_http(e)
    return TokenRefreshResponse(access_token=result.access_token, refresh_token=result.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(data: LogoutRequest, service: AuthService = Depends(get_auth_service)):
    await service.logout(data.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserOut)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/reset-password", response_model=OtpDispatchResponse)
async def reset_password(data: EmailRequest, service: AuthService = Depends(get_auth_service),
                         limiter: InMemoryRateLimiter = Depends(get_rate_limiter)):
    """Always answers with the same shape, whether or not the account exists."""
    try:
        await enforce_otp_send_limit(limiter, data.email, OTPPurpose.RESET_PASSWORD)
        result = await service.reset_password(data.email)
    except AuthError as e:
        raise to_http(e)
    return OtpDispatchResponse(**vars(result))


@router.post("/verify-reset-otp", response_model=VerifyResetOtpResponse)
async def verify_reset_otp(data: VerifyCodeRequest, service: AuthService = Depends(get_auth_service)):
    try:
        result = await service.verify_reset_otp(data.email, data.otp)
    except AuthError as e:
        raise to_http(e)
    return VerifyResetOtpResponse(**vars(result))


@router.post("/update-password", response_model=MessageResponse)
async def update_password(data: UpdatePasswordRequest, service: AuthService = Depends(get_auth_service)):
    try:
        await service.update_password(data.reset_token, data.password)
    except AuthError as e:
        raise to_http(e)
    return MessageResponse(message="Password updated successfully")
