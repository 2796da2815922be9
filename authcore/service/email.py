from __future__ import annotations

import asyncio
import smtplib
import ssl
from contextlib import contextmanager
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterator, Optional

from authcore.config import Settings
from authcore.logging import get_logger, redact_email
from authcore.service.verification import CodePurpose

logger = get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 30

_HTML_BODY = """<!doctype html>
<html lang="en">
  <body style="margin:0;padding:32px 16px;font-family:Helvetica,Arial,sans-serif;color:#222;">
    <table role="presentation" width="100%" style="max-width:560px;margin:auto;">
      <tr><td><h2 style="margin-top:0;">{heading}</h2></td></tr>
      <tr><td><p>{intro}</p></td></tr>
      <tr><td style="font-size:30px;font-weight:bold;letter-spacing:8px;padding:12px 0;">{code}</td></tr>
      <tr><td><p>The code expires in {ttl_minutes} minutes.</p><p>{outro}</p></td></tr>
      <tr><td style="padding-top:32px;font-size:12px;color:#777;">{app_name}</td></tr>
    </table>
  </body>
</html>
"""

_TEXT_BODY = """{heading}

{intro}

  {code}

The code expires in {ttl_minutes} minutes.
{outro}

-- {app_name}
"""

_COPY = {
    CodePurpose.EMAIL_VERIFY: {
        "subject": "Verify your {app_name} email",
        "heading": "Verify your email",
        "intro": "Thanks for signing up! Enter this code to verify your email address:",
        "outro": "If you didn't create an account, you can safely ignore this email.",
    },
    CodePurpose.PASSWORD_RESET: {
        "subject": "Reset your {app_name} password",
        "heading": "Reset your password",
        "intro": "We received a request to reset your password. Enter this code to choose a new one:",
        "outro": "If you didn't request this, you can safely ignore this email.",
    },
}

# Most specific first; SMTPException is itself an OSError
_FAILURES = (
    (smtplib.SMTPAuthenticationError, "email_auth_failed"),
    (smtplib.SMTPRecipientsRefused, "email_recipient_refused"),
    (smtplib.SMTPException, "email_smtp_error"),
    (OSError, "email_connect_failed"),
)


class EmailService:
    """Delivers one-time codes over SMTP.

    Without an SMTP host and a sender address nothing is sent: the message is
    logged (recipient redacted) and delivery counts as successful, which keeps
    local setups usable.
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
        from_name: str = "StudentHub",
        code_ttl_minutes: int = 15,
    ) -> None:
        self.host = smtp_host
        self.port = smtp_port
        self.username = smtp_user
        self.password = smtp_password
        self.starttls = smtp_use_tls
        self.sender = from_email or smtp_user
        self.from_name = from_name
        self.code_ttl_minutes = code_ttl_minutes

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
            code_ttl_minutes=settings.verification_code_ttl_minutes,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)

    def render(self, purpose: CodePurpose, code: str) -> tuple[str, str, str]:
        """Return ``(subject, html_body, text_body)`` for a code email."""
        copy = _COPY[CodePurpose(purpose)]
        fields = dict(copy, code=code, ttl_minutes=self.code_ttl_minutes, app_name=self.from_name)
        subject = copy["subject"].format(app_name=self.from_name)
        return subject, _HTML_BODY.format(**fields), _TEXT_BODY.format(**fields)

    def _build_message(
        self, to_email: str, subject: str, html_body: str, text_body: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.from_name, self.sender))
        message["To"] = to_email
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        return message

    @contextmanager
    def _connect(self) -> Iterator[smtplib.SMTP]:
        context = ssl.create_default_context()
        if self.starttls:
            server = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP_SSL(
                self.host, self.port, context=context, timeout=SMTP_TIMEOUT_SECONDS
            )
        with server:
            if self.starttls:
                server.starttls(context=context)
            if self.username and self.password:
                server.login(self.username, self.password)
            yield server

    def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Hand one message to the SMTP server. Failures are logged, not raised."""
        recipient = redact_email(to_email)
        if not self.is_configured:
            logger.info("email_dev_mode", to=recipient, subject=subject)
            return True

        message = self._build_message(to_email, subject, html_body, text_body)
        try:
            with self._connect() as server:
                server.send_message(message)
        except OSError as exc:
            event = next(name for kind, name in _FAILURES if isinstance(exc, kind))
            logger.error(
                event,
                to=recipient,
                host=self.host,
                port=self.port,
                error_type=type(exc).__name__,
                smtp_code=getattr(exc, "smtp_code", None),
            )
            return False

        logger.info("email_sent", to=recipient, subject=subject)
        return True

    def send_code_sync(self, to_email: str, purpose: CodePurpose, code: str) -> bool:
        return self.deliver(to_email, *self.render(purpose, code))

    async def send_code(self, to_email: str, purpose: CodePurpose, code: str) -> bool:
        return await asyncio.to_thread(self.send_code_sync, to_email, purpose, code)
