"""
core/mailer.py -- Outbound transactional email over SMTP.

Two messages exist: the password reset link and the welcome email. Both are
HTML bodies built with email.mime and sent through smtplib. When SMTP_HOST is
empty (local development, tests) the message is logged instead of sent so the
reset link can be copied from the console.

Send failures propagate as the underlying smtplib/OSError exception. Whether
a failure matters is the caller's call: the reset flow lets it surface as a
500, registration logs and carries on.

Layer rule: no imports from api/, auth/, billing/, or projects/.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from core.config import Settings

logger = logging.getLogger("saaskit.mail")

_BUTTON_STYLE = "color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; display: inline-block;"


class Mailer:
    """SMTP sender bound to a Settings instance."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_password_reset_email(self, to_email: str, reset_token: str, first_name: str | None = None) -> None:
        s = self._settings
        reset_url = f"{s.frontend_url}/reset-password?token={reset_token}"
        body = f"""
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
              <h2>Hello {html.escape(first_name or "there")},</h2>
              <p>We received a request to reset the password for your account.</p>
              <p>Click the button below to choose a new password:</p>
              <a href="{reset_url}" style="background-color: #007bff; {_BUTTON_STYLE}">Reset password</a>
              <p>This link is valid for {s.password_reset_expire_seconds // 60} minutes.</p>
              <p>If you did not ask for this, you can ignore this email.</p>
              {self._footer()}
            </div>
        """
        self._send(to_email, f"Password reset - {s.app_name}", body)

    def send_welcome_email(self, to_email: str, first_name: str | None = None) -> None:
        s = self._settings
        body = f"""
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
              <h2>Welcome {html.escape(first_name or "aboard")}!</h2>
              <p>Thanks for joining {html.escape(s.app_name)}. Your account is ready to use.</p>
              <a href="{s.frontend_url}/dashboard" style="background-color: #28a745; {_BUTTON_STYLE}">Go to dashboard</a>
              {self._footer()}
            </div>
        """
        self._send(to_email, f"Welcome - {s.app_name}", body)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _footer(self) -> str:
        s = self._settings
        return f'<hr><p style="color: #666; font-size: 12px;">{html.escape(s.app_name)} - {s.app_url}</p>'

    def _send(self, to_email: str, subject: str, html_body: str) -> None:
        s = self._settings
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((s.from_name, s.from_email))
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        if not s.smtp_host:
            logger.info("SMTP not configured; email to %s not sent. Subject: %s\n%s", to_email, subject, html_body)
            return

        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as server:
            if s.smtp_starttls:
                server.starttls()
            if s.smtp_user:
                server.login(s.smtp_user, s.smtp_password)
            server.sendmail(s.from_email, [to_email], msg.as_string())
        logger.info("Sent '%s' to %s", subject, to_email)
