"""Notification gateway: verification and password-reset email over SMTP."""

from __future__ import annotations

import smtplib
import ssl
import threading
from email.message import EmailMessage
from typing import List, Optional
import logging

from app.config import Settings, settings as default_settings
from app.core.exceptions import NotificationError
from app.services.email_templates import render_password_reset, render_verification

logger = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 587
IMPLICIT_TLS_PORT = 465


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SMTPConnection:
    """
    Lazily opened, verified SMTP client shared by one process.

    The connection is created on first use, checked with NOOP before reuse,
    and reopened when the server dropped it. All access is serialized by a
    lock because ``smtplib`` clients are not thread safe.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self._lock = threading.Lock()
        self._client: Optional[smtplib.SMTP] = None

    def _port(self) -> int:
        raw = (self.settings.SMTP_PORT or "").strip()
        if not raw:
            return DEFAULT_SMTP_PORT
        try:
            port = int(raw)
        except ValueError:
            return -1
        return port if 1 <= port <= 65535 else -1

    def config_errors(self) -> List[str]:
        missing = []
        if not self.settings.SMTP_HOST:
            missing.append("SMTP_HOST")
        if not self.settings.SMTP_USER:
            missing.append("SMTP_USER")
        if not self.settings.SMTP_PASS:
            missing.append("SMTP_PASS")
        if self._port() < 0:
            missing.append("SMTP_PORT")
        return missing

    def _open(self) -> smtplib.SMTP:
        missing = self.config_errors()
        if missing:
            raise NotificationError(
                "SMTP configuration is missing or invalid. Please set/repair the following env vars: "
                + ", ".join(missing)
                + "."
            )

        port = self._port()
        implicit_tls = self.settings.SMTP_SECURE or port == IMPLICIT_TLS_PORT
        context = ssl.create_default_context()
        timeout = self.settings.SMTP_TIMEOUT_SECONDS

        if implicit_tls:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                self.settings.SMTP_HOST, port, context=context, timeout=timeout
            )
        else:
            client = smtplib.SMTP(self.settings.SMTP_HOST, port, timeout=timeout)
            client.starttls(context=context)
        try:
            client.login(self.settings.SMTP_USER, self.settings.SMTP_PASS)
            code, _ = client.noop()
            if code != 250:
                raise smtplib.SMTPResponseException(code, b"SMTP verification failed")
        except Exception:
            client.close()
            raise
        logger.info("SMTP connection established to %s:%s", self.settings.SMTP_HOST, port)
        return client

    def _alive(self, client: smtplib.SMTP) -> bool:
        try:
            code, _ = client.noop()
        except (smtplib.SMTPException, OSError):
            return False
        return code == 250

    def _ensure(self) -> smtplib.SMTP:
        if self._client is not None and not self._alive(self._client):
            self._drop()
        if self._client is None:
            self._client = self._open()
        return self._client

    def _drop(self) -> None:
        if self._client is None:
            return
        try:
            self._client.quit()
        except (smtplib.SMTPException, OSError):
            self._client.close()
        self._client = None

    def send(self, message: EmailMessage) -> None:
        with self._lock:
            client = self._ensure()
            try:
                client.send_message(message)
            except smtplib.SMTPServerDisconnected:
                # One retry on a fresh connection
                client.close()
                self._client = None
                self._ensure().send_message(message)

    def close(self) -> None:
        with self._lock:
            self._drop()


class EmailService:
    """Deliver transactional auth emails; any delivery failure raises NotificationError."""

    def __init__(
        self,
        connection: Optional[SMTPConnection] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.connection = connection or SMTPConnection(self.settings)

    def send_mail(self, to: str, subject: str, text: str, html: str) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.settings.SMTP_FROM
        message["To"] = to
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        try:
            self.connection.send(message)
        except NotificationError:
            logger.error("Email not sent to %s: SMTP is not configured", redact_email(to))
            raise
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email send failed to %s (%s): %s",
                redact_email(to),
                type(exc).__name__,
                exc,
            )
            raise NotificationError() from exc

        logger.info("Email sent to %s: %s", redact_email(to), subject)

    def send_verification_email(self, to: str, link: str, display_name: str) -> None:
        text, html = render_verification(display_name, link)
        self.send_mail(to, "Verify your email", text, html)

    def send_password_reset_email(self, to: str, link: str, display_name: str) -> None:
        text, html = render_password_reset(display_name, link)
        self.send_mail(to, "Reset your password", text, html)

    def close(self) -> None:
        self.connection.close()


email_service = EmailService()
