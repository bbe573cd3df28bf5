"""Transactional email — verification, welcome, password reset, email recovery.

Delivery is best-effort: every ``send_*`` returns ``True``/``False`` and
never raises, so a mail outage cannot undo an account change that has
already been committed.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

from starlette.concurrency import run_in_threadpool

from kicks_auth.core.config import Settings, settings

logger = logging.getLogger(__name__)

_HTML_LAYOUT = """\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>{title}</h1>
    {body}
    <p style="color: #666; font-size: 14px;">{brand}. This is an automated email, please do not reply.</p>
  </div>
</body>
</html>
"""


class EmailService:
    def __init__(self, cfg: Settings = settings) -> None:
        self.cfg = cfg
        self.brand = cfg.FROM_NAME

    def _layout(self, title: str, body: str) -> str:
        return _HTML_LAYOUT.format(title=html.escape(title), brand=html.escape(self.brand), body=body)

    def _link(self, path: str, **params: str) -> str:
        base = self.cfg.FRONTEND_URL.rstrip("/")
        return f"{base}{path}?{urlencode(params)}" if params else f"{base}{path}"

    async def send_email(
        self, to_email: str, subject: str, html_content: str, text_content: str
    ) -> bool:
        """Send one message; ``False`` on any failure or when SMTP is not configured."""
        if not self.cfg.email_enabled:
            logger.info("Email delivery disabled; not sending %r to %s", subject, to_email)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.cfg.FROM_NAME} <{self.cfg.FROM_EMAIL}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            await run_in_threadpool(self._send_smtp, msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send %r to %s", subject, to_email)
            return False
        logger.info("Email %r sent to %s", subject, to_email)
        return True

    def _send_smtp(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.cfg.SMTP_HOST, self.cfg.SMTP_PORT, timeout=30) as server:
            if self.cfg.SMTP_USE_TLS:
                server.starttls()
            if self.cfg.SMTP_USERNAME:
                server.login(self.cfg.SMTP_USERNAME, self.cfg.SMTP_PASSWORD or "")
            server.send_message(msg)

    async def send_verification_email(self, to_email: str, first_name: str | None, token: str) -> bool:
        url = self._link("/verify-email", token=token)
        hours = self.cfg.EMAIL_VERIFICATION_EXPIRE_HOURS
        name = first_name or "there"
        html_content = self._layout(
            f"Welcome to {self.brand}!",
            f"<p>Hi {html.escape(name)}!</p>"
            "<p>Please verify your email address to finish creating your account.</p>"
            f'<p><a href="{html.escape(url)}">Verify Email Address</a></p>'
            f"<p>This link expires in {hours} hours. If you did not sign up, ignore this email.</p>",
        )
        text = (
            f"Hi {name}!\n\nVerify your email address by opening this link:\n{url}\n\n"
            f"This link expires in {hours} hours. If you did not sign up, ignore this email.\n"
        )
        return await self.send_email(
            to_email, f"Verify Your Email Address - {self.brand}", html_content, text
        )

    async def send_welcome_email(self, to_email: str, first_name: str | None) -> bool:
        name = first_name or "there"
        url = self._link("/")
        html_content = self._layout(
            f"Welcome to {self.brand}!",
            f"<p>Hi {html.escape(name)}!</p>"
            "<p>Your email address is verified and your account is ready.</p>"
            f'<p><a href="{html.escape(url)}">Start shopping</a></p>',
        )
        text = f"Hi {name}!\n\nYour email address is verified and your account is ready.\n{url}\n"
        return await self.send_email(to_email, f"Welcome to {self.brand}!", html_content, text)

    async def send_password_reset_email(self, to_email: str, first_name: str | None, token: str) -> bool:
        url = self._link("/auth/reset-password", token=token)
        minutes = self.cfg.PASSWORD_RESET_EXPIRE_MINUTES
        name = first_name or "there"
        html_content = self._layout(
            "Reset your password",
            f"<p>Hi {html.escape(name)},</p><p>We received a request to reset your password.</p>"
            f'<p><a href="{html.escape(url)}">Reset Password</a></p>'
            f"<p>This link expires in {minutes} minutes. If you did not ask for this, ignore this email.</p>",
        )
        text = (
            f"Hi {name},\n\nReset your password with this link:\n{url}\n\n"
            f"This link expires in {minutes} minutes. If you did not ask for this, ignore this email.\n"
        )
        return await self.send_email(to_email, f"Password Reset - {self.brand}", html_content, text)

    async def send_email_recovery_notice(self, to_email: str, first_name: str | None) -> bool:
        name = first_name or "there"
        url = self._link("/auth")
        html_content = self._layout(
            "Your account email",
            f"<p>Hi {html.escape(name)},</p>"
            f"<p>You asked which email address your {html.escape(self.brand)} account uses. "
            f"It is <strong>{html.escape(to_email)}</strong>.</p>"
            f'<p><a href="{html.escape(url)}">Sign in</a></p>',
        )
        text = f"Hi {name},\n\nYour {self.brand} account uses {to_email}.\nSign in: {url}\n"
        return await self.send_email(to_email, f"Account Recovery - {self.brand}", html_content, text)
