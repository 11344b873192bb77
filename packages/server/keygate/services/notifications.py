"""
Outbound notifications for the password reset flow.

The dispatcher is a collaborator of ``CredentialService``; any failure to hand
the message to the mail server is reported as ``DELIVERY_FAILED`` so the API
can answer with ``EMAIL_SEND_FAILED`` rather than a generic error.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Protocol

import structlog

from keygate.core.config import Settings
from keygate.core.errors import AuthError, ErrorKind

log = structlog.get_logger()


class NotificationDispatcher(Protocol):
    async def send_reset_code(self, email: str, name: str, code: str) -> None: ...


def render_plain_text(name: str, code: str, ttl_minutes: int) -> str:
    return (
        f"Hello {name},\n\n"
        "You have requested to reset your password.\n\n"
        f"Your one-time code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        "If you did not request this password reset, please ignore this email.\n"
    )


def render_html(name: str, code: str, ttl_minutes: int) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif;\">"
        f"<p>Hello {escape(name)},</p>"
        "<p>You have requested to reset your password. Use the code below:</p>"
        "<p style=\"font-size: 28px; font-weight: bold; letter-spacing: 6px;\">"
        f"{code}</p>"
        f"<p>This code will expire in <strong>{ttl_minutes} minutes</strong>.</p>"
        "<p>If you did not request this password reset, please ignore this email.</p>"
        "</body></html>"
    )


class SmtpDispatcher:
    """Sends reset codes over SMTP. One connection per message."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def build_message(self, email: str, name: str, code: str) -> EmailMessage:
        ttl = self._settings.otp_ttl_minutes
        message = EmailMessage()
        message["Subject"] = "Password Reset - OTP Verification"
        message["From"] = formataddr((self._settings.mail_sender_name, self._settings.mail_sender))
        message["To"] = email
        message.set_content(render_plain_text(name, code, ttl))
        message.add_alternative(render_html(name, code, ttl), subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as conn:
            if s.smtp_starttls:
                conn.starttls()
            if s.smtp_username:
                conn.login(s.smtp_username, s.smtp_password)
            conn.send_message(message)

    async def send_reset_code(self, email: str, name: str, code: str) -> None:
        message = self.build_message(email, name, code)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            log.error("notify.reset_code_failed", email=email, error=type(exc).__name__)
            raise AuthError(ErrorKind.DELIVERY_FAILED, "could not deliver reset code") from exc
        log.info("notify.reset_code_sent", email=email)


class LogDispatcher:
    """Development stand-in used when no SMTP host is configured.

    The code itself is logged only with ``reveal_codes`` (``KG_DEBUG``).
    """

    def __init__(self, reveal_codes: bool = False):
        self.reveal_codes = reveal_codes

    async def send_reset_code(self, email: str, name: str, code: str) -> None:
        if self.reveal_codes:
            log.warning("notify.smtp_not_configured", email=email, code=code)
        else:
            log.warning("notify.smtp_not_configured", email=email)


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.smtp_enabled:
        return SmtpDispatcher(settings)
    if settings.environment == "production":
        raise RuntimeError("KG_SMTP_HOST must be set in production")
    return LogDispatcher(reveal_codes=settings.debug)
