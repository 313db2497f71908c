from __future__ import annotations

import smtplib
import ssl
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from suiteauth.config import Settings
from suiteauth.logging import get_logger

logger = get_logger(__name__)

OUTBOX_LIMIT = 100


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Delivers sign-in links over SMTP.

    When no SMTP host is configured the message is logged instead of sent,
    which is the normal development and test setup.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Suite",
        base_url: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:8000").rstrip("/")
        # Messages logged instead of sent while SMTP is unconfigured
        self.outbox: deque[tuple[str, str]] = deque(maxlen=OUTBOX_LIMIT)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            base_url=settings.app_base_url,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _send_email(
        self, to_email: str, subject: str, html_body: str, text_body: str
    ) -> bool:
        """Send one message; returns False on any delivery failure."""
        if not self.is_configured:
            logger.info("email_dev_mode", to=redact_email(to_email), subject=subject)
            self.outbox.append((to_email, subject))
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "email_auth_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_code=exc.smtp_code,
            )
            return False
        except smtplib.SMTPException as exc:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        except OSError as exc:
            # ssl.SSLError, TimeoutError and refused connections all land here
            logger.error(
                "email_connect_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

        logger.info("email_sent", to=redact_email(to_email), subject=subject)
        return True

    def magic_link_url(self, token: str) -> str:
        return f"{self.base_url}/auth/verify?token={token}"

    def send_magic_link(self, to_email: str, token: str, *, ttl_minutes: int = 15) -> bool:
        url = self.magic_link_url(token)
        subject = "Your sign-in link"
        html_body = f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6;">
    <h1>Sign in</h1>
    <p>Use the button below to sign in. The link works once and expires in {ttl_minutes} minutes.</p>
    <p style="margin: 30px 0;"><a href="{url}">Sign in</a></p>
    <p>If you didn't request this, you can safely ignore this email.</p>
    <p style="font-size: 12px;">If the button doesn't work, paste this URL into your browser: {url}</p>
</body>
</html>
"""
        text_body = f"""Sign in

Visit the link below to sign in. It works once and expires in {ttl_minutes} minutes.

{url}

If you didn't request this, you can safely ignore this email.
"""
        return self._send_email(to_email, subject, html_body, text_body)
