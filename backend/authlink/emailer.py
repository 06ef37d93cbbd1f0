"""
Outgoing email for login codes and password resets.

Two senders are available:
- console: log the recipient and subject only (development)
- smtp: deliver through an SMTP relay with aiosmtplib

Bodies contain live tokens, so they are never logged.  Any delivery problem
is raised as `DeliveryFailure`; the token that was already stored is left
to expire and be swept.
"""

import logging
from email.mime.text import MIMEText
from typing import Optional, Protocol

import aiosmtplib

from .config import Settings
from .errors import DeliveryFailure

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


class ConsoleEmailSender:
    """Log that an email would have been sent."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Email (console mode) to %s: %s", to, subject)


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    async def send(self, to: str, subject: str, body: str) -> None:
        message = MIMEText(body, "plain", "utf-8")
        message["From"] = self.from_email
        message["To"] = to
        message["Subject"] = subject
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=None if self.use_tls else bool(self.username),
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", to, type(exc).__name__)
            raise DeliveryFailure(f"could not deliver email to {to}") from exc
        logger.info("Email sent via SMTP to %s", to)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.email_mode == "smtp":
        if not settings.smtp_host:
            raise ValueError("EMAIL_MODE=smtp requires SMTP_HOST")
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_email=settings.smtp_from_email,
            username=settings.smtp_user,
            password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_seconds,
        )
    return ConsoleEmailSender()
