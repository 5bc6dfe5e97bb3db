"""
Outbound email for one-time codes.

Delivery is best effort and never gates a response: the code is already
stored when the email is handed off, and a user who never receives it can
ask for another one.
"""
from abc import ABC, abstractmethod
from typing import Optional, Set
import asyncio
import logging

from fastapi.concurrency import run_in_threadpool
import resend

from placement_auth.models.otp import OTPPurpose
from placement_auth.services.security import SecurityConfig, SecurityUtils, security_config

logger = logging.getLogger(__name__)

SUBJECTS = {
    OTPPurpose.VERIFY_EMAIL: "Your verification code",
    OTPPurpose.RESET_PASSWORD: "Your password reset code",
}


def render_body(code: str, purpose: OTPPurpose, ttl_minutes: int) -> str:
    if purpose == OTPPurpose.RESET_PASSWORD:
        return (
            f"Your password reset code is {code}. It expires in {ttl_minutes} minutes.\n"
            "If you did not request a password reset, you can ignore this email."
        )
    return f"Your verification code is {code}. It expires in {ttl_minutes} minutes."


class EmailNotifier(ABC):
    @abstractmethod
    async def send(self, email: str, code: str, purpose: OTPPurpose, ttl_minutes: int) -> None:
        ...


class LoggingEmailNotifier(EmailNotifier):
    """Development backend: writes the message to the log instead of sending it."""

    async def send(self, email: str, code: str, purpose: OTPPurpose, ttl_minutes: int) -> None:
        logger.info(f"Simulated email to {email} [{SUBJECTS[purpose]}]: {render_body(code, purpose, ttl_minutes)}")


class ResendEmailNotifier(EmailNotifier):
    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    async def send(self, email: str, code: str, purpose: OTPPurpose, ttl_minutes: int) -> None:
        params = {
            "from": self.sender,
            "to": [email],
            "subject": SUBJECTS[purpose],
            "text": render_body(code, purpose, ttl_minutes),
        }
        # Emails.send is sync; run it in the threadpool so the loop stays free
        await run_in_threadpool(resend.Emails.send, params)


def build_notifier(config: SecurityConfig) -> EmailNotifier:
    if config.email_backend == "resend":
        return ResendEmailNotifier(config.resend_api_key, config.email_from)
    return LoggingEmailNotifier()


class EmailDispatcher:
    """Runs notifier calls as background tasks and logs, never raises, their failures."""

    def __init__(self, notifier: EmailNotifier):
        self.notifier = notifier
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, email: str, code: str, purpose: OTPPurpose, ttl_minutes: int) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(email, code, purpose, ttl_minutes))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, email: str, code: str, purpose: OTPPurpose, ttl_minutes: int) -> None:
        try:
            await self.notifier.send(email, code, purpose, ttl_minutes)
        except Exception:
            logger.exception(f"Failed to send {purpose.value} email to {email}")
            SecurityUtils.log_security_event(
                "otp_email_delivery_failed", {"purpose": purpose.value}, user_email=email
            )
            return
        logger.info(f"{purpose.value} email sent to {email}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries, e.g. at shutdown."""
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=timeout)


_dispatcher: Optional[EmailDispatcher] = None


def get_email_dispatcher() -> EmailDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EmailDispatcher(build_notifier(security_config))
    return _dispatcher
