"""Email rendering and delivery for account notifications."""
from __future__ import annotations

import logging
import smtplib
import ssl
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional, Protocol
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .config import MailSettings
from .i18n import translate
from .models import CasaOrg, User


TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "mailers"

logger = logging.getLogger("casa.mailers")


@dataclass(frozen=True)
class MailMessage:
    """A rendered email ready for delivery."""

    template: str
    to: str
    subject: str
    body: str
    from_address: str

    def to_email_message(self) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.from_address
        msg["To"] = self.to
        msg.set_content(self.body)
        return msg


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a delivery attempt; failures carry the transport error."""

    message: MailMessage
    delivered: bool
    error: Optional[str] = None


class Transport(Protocol):
    def send(self, message: MailMessage) -> None:
        ...


class MemoryTransport:
    """Keeps delivered messages in memory; used for tests and local development."""

    def __init__(self) -> None:
        self._deliveries: List[MailMessage] = []
        self._lock = threading.Lock()

    @property
    def deliveries(self) -> List[MailMessage]:
        with self._lock:
            return list(self._deliveries)

    def send(self, message: MailMessage) -> None:
        with self._lock:
            self._deliveries.append(message)

    def clear(self) -> None:
        with self._lock:
            self._deliveries.clear()


class LogTransport:
    """Writes messages to the log instead of sending them."""

    def send(self, message: MailMessage) -> None:
        logger.info(
            "Mail delivery disabled; %s to %s (subject=%r):\n%s",
            message.template,
            message.to,
            message.subject,
            message.body,
        )


class SMTPTransport:
    """Delivers messages through an SMTP relay."""

    def __init__(self, settings: MailSettings, *, timeout: float = 10.0) -> None:
        if not settings.host:
            raise ValueError("SMTP delivery requires a mail host")
        self._settings = settings
        self._timeout = timeout

    def send(self, message: MailMessage) -> None:
        settings = self._settings
        email_message = message.to_email_message()

        if settings.use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(settings.host, settings.port, context=context, timeout=self._timeout) as server:
                if settings.username and settings.password:
                    server.login(settings.username, settings.password)
                server.send_message(email_message)
            return

        with smtplib.SMTP(settings.host, settings.port, timeout=self._timeout) as server:
            if settings.use_tls:
                server.starttls(context=ssl.create_default_context())
            if settings.username and settings.password:
                server.login(settings.username, settings.password)
            server.send_message(email_message)


def build_transport(settings: MailSettings) -> Transport:
    if settings.delivery_method == "smtp":
        return SMTPTransport(settings)
    if settings.delivery_method == "memory":
        return MemoryTransport()
    return LogTransport()


class Mailer:
    """Renders the notification templates and hands them to a transport."""

    def __init__(self, transport: Transport, *, from_address: str, base_url: str) -> None:
        self.transport = transport
        self._from_address = from_address
        self._base_url = base_url.rstrip("/")
        self._env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    @classmethod
    def from_settings(cls, settings: MailSettings, *, base_url: str) -> "Mailer":
        return cls(build_transport(settings), from_address=settings.from_address, base_url=base_url)

    def _render(self, template: str, *, to: str, subject: str, **context) -> MailMessage:
        body = self._env.get_template(f"{template}.txt").render(**context)
        return MailMessage(
            template=template,
            to=to,
            subject=subject,
            body=body,
            from_address=self._from_address,
        )

    def account_setup(self, user: User, organisation: CasaOrg) -> MailMessage:
        return self._render(
            "account_setup",
            to=user.email,
            subject=translate("mailer.account_setup.subject", organisation=organisation.name),
            user=user,
            organisation=organisation,
            sign_in_url=f"{self._base_url}/users/sign_in",
        )

    def deactivation(self, user: User, organisation: CasaOrg) -> MailMessage:
        return self._render(
            "deactivation",
            to=user.email,
            subject=translate("mailer.deactivation.subject", organisation=organisation.name),
            user=user,
            organisation=organisation,
        )

    def invitation_instructions(self, user: User, organisation: CasaOrg, token: str) -> MailMessage:
        query = urlencode({"invitation_token": token})
        return self._render(
            "invitation_instructions",
            to=user.email,
            subject=translate("mailer.invitation_instructions.subject"),
            user=user,
            organisation=organisation,
            accept_url=f"{self._base_url}/users/invitation/accept?{query}",
        )

    def deliver(self, message: MailMessage) -> DeliveryResult:
        """Send ``message``; transport failures are reported, not raised."""

        try:
            self.transport.send(message)
        except (OSError, smtplib.SMTPException) as exc:
            logger.warning(
                "Failed to deliver %s email to %s: %s",
                message.template,
                message.to,
                exc,
            )
            return DeliveryResult(message=message, delivered=False, error=str(exc) or type(exc).__name__)

        logger.info("Delivered %s email to %s", message.template, message.to)
        return DeliveryResult(message=message, delivered=True)


__all__ = [
    "DeliveryResult",
    "LogTransport",
    "MailMessage",
    "Mailer",
    "MemoryTransport",
    "SMTPTransport",
    "build_transport",
]
