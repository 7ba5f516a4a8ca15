"""
mail/sender.py -- Email collaborator used by the auth routes.

EmailSender renders the named templates (mail/templates/*.html, Jinja2 with
autoescaping) and hands the result to _deliver(). Two transports:

  SmtpEmailSender -- smtplib with optional STARTTLS; used when SMTP_HOST is set.
  LogEmailSender  -- logs recipient and subject only; the default in dev and
                     the collector tests assert against.

Delivery failures propagate to the caller. There is no retry; a failed
verification email fails the request and the client may retry it.

Secrets (the single-use token inside a link) are never logged.

Layer rule: no imports from api/, auth/, or courses/.
"""

from __future__ import annotations

import logging
import smtplib
from collections import deque
from dataclasses import dataclass
from email.message import EmailMessage
from urllib.parse import urlencode

from jinja2 import Environment, PackageLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("falcons.mail")

_templates = Environment(
    loader=PackageLoader("mail", "templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str | None = None


class EmailSender:
    """Base sender: builds messages, subclasses deliver them."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def send(self, to: str, subject: str, html: str, text: str | None = None) -> None:
        self._deliver(OutboundEmail(to=to, subject=subject, html=html, text=text))

    def send_template(self, template: str, to: str, subject: str, **context) -> None:
        html = _templates.get_template(f"{template}.html").render(**context)
        self.send(to, subject, html)

    def send_verification_email(self, to: str, token: str, first_name: str = "") -> None:
        self.send_template(
            "verification",
            to,
            "Verify your email address",
            first_name=first_name,
            link=self._client_link("/verify-email", token, to),
            expires_hours=self.settings.email_verification_expire_seconds // 3600,
        )

    def send_password_reset_email(self, to: str, token: str, first_name: str = "") -> None:
        self.send_template(
            "password_reset",
            to,
            "Reset your password",
            first_name=first_name,
            link=self._client_link("/reset-password", token, to),
            expires_minutes=self.settings.password_reset_expire_seconds // 60,
        )

    def send_welcome_email(self, to: str, first_name: str = "") -> None:
        self.send_template("welcome", to, "Welcome to Falcons!", first_name=first_name)

    def _client_link(self, path: str, token: str, email: str) -> str:
        base = self.settings.client_url.rstrip("/")
        return f"{base}{path}?{urlencode({'token': token, 'email': email})}"

    def _deliver(self, message: OutboundEmail) -> None:
        raise NotImplementedError


class SmtpEmailSender(EmailSender):
    def _deliver(self, message: OutboundEmail) -> None:
        msg = EmailMessage()
        msg["From"] = self.settings.email_from
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.set_content(message.text or "This message requires an HTML-capable mail client.")
        msg.add_alternative(message.html, subtype="html")

        s = self.settings
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as smtp:
                if s.smtp_use_tls:
                    smtp.starttls()
                if s.smtp_username:
                    smtp.login(s.smtp_username, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.error("Email delivery failed to=%s subject=%r", message.to, message.subject)
            raise
        logger.info("Email sent to=%s subject=%r", message.to, message.subject)


class LogEmailSender(EmailSender):
    """Keeps the most recent messages in memory and logs a one-line summary."""

    outbox_size = 50

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.outbox: deque[OutboundEmail] = deque(maxlen=self.outbox_size)

    def _deliver(self, message: OutboundEmail) -> None:
        self.outbox.append(message)
        logger.info("Email (not sent, SMTP_HOST unset) to=%s subject=%r", message.to, message.subject)


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the transport from configuration."""
    if settings.smtp_host:
        return SmtpEmailSender(settings)
    return LogEmailSender(settings)
