"""Templated email delivery for account verification and password recovery.

Templates are resolved with a two-tier loader:
1. ``MAIL_TEMPLATES_PATH`` (operator overrides)
2. Built-in templates shipped with the package
"""

from __future__ import annotations

import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Mapping

from jinja2 import BaseLoader, ChoiceLoader, Environment, FileSystemLoader, PackageLoader

from ..config import ConfigurationError, Settings
from ..domain.contracts import Recipient

logger = logging.getLogger(__name__)

GMAIL_SMTP_HOST = "smtp.gmail.com"


class TemplateRenderer:
    """Renders HTML mail bodies from Jinja2 templates."""

    def __init__(self, templates_path: str | None = None) -> None:
        loaders: list[BaseLoader] = []
        if templates_path:
            loaders.append(FileSystemLoader(templates_path))
        loaders.append(PackageLoader("auth_service.notifications", "templates"))

        self._env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=True,
            keep_trailing_newline=False,
        )

    def render(self, template_name: str, context: Mapping[str, Any]) -> str:
        return self._env.get_template(f"{template_name}.html").render(**context)


class Mailer(ABC):
    """Base gateway: decorates the context with platform details and renders the body."""

    def __init__(
        self,
        renderer: TemplateRenderer,
        *,
        platform_name: str,
        platform_support: str,
    ) -> None:
        self._renderer = renderer
        self._platform_name = platform_name
        self._platform_support = platform_support

    def compose(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> MIMEMultipart:
        full_context = {
            **context,
            "platform": self._platform_name,
            "platform_mail": self._platform_support,
            "current_year": datetime.now(timezone.utc).year,
        }
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((self._platform_name, self._platform_support))
        message["To"] = formataddr((recipient.name, recipient.address))
        message.attach(MIMEText(self._renderer.render(template_name, full_context), "html"))
        return message

    @abstractmethod
    def send(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> bool:
        """Deliver the rendered message; ``False`` when it was not accepted."""


class SmtpMailer(Mailer):
    """Delivers mail through an SMTP relay using STARTTLS."""

    def __init__(
        self,
        renderer: TemplateRenderer,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        platform_name: str,
        platform_support: str,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(renderer, platform_name=platform_name, platform_support=platform_support)
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._timeout = timeout

    def send(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> bool:
        """Render and relay the message; delivery failures are logged and reported as ``False``."""
        message = self.compose(recipient, subject, template_name, context)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls()
                if self._username:
                    server.login(self._username, self._password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("failed to send %s mail to %s: %s", template_name, recipient.address, exc)
            return False
        logger.info("sent %s mail to %s", template_name, recipient.address)
        return True


class ConsoleMailer(Mailer):
    """Development gateway that writes rendered mail to the log instead of sending it."""

    def send(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> bool:
        message = self.compose(recipient, subject, template_name, context)
        logger.info("console mail backend:\n%s", message.as_string())
        return True


def build_mailer(settings: Settings) -> Mailer:
    """Create the gateway selected by ``EMAIL_PROVIDER``."""
    renderer = TemplateRenderer(settings.mail_templates_path or None)
    platform = {
        "platform_name": settings.platform_name,
        "platform_support": settings.platform_support,
    }
    provider = settings.email_provider
    if provider == "google":
        return SmtpMailer(
            renderer,
            host=GMAIL_SMTP_HOST,
            port=587,
            username=settings.email_address,
            password=settings.email_password,
            timeout=settings.smtp_timeout_seconds,
            **platform,
        )
    if provider == "smtp":
        if not settings.smtp_host:
            raise ConfigurationError("SMTP_HOST is required when EMAIL_PROVIDER=smtp")
        return SmtpMailer(
            renderer,
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_pass,
            timeout=settings.smtp_timeout_seconds,
            **platform,
        )
    if provider == "console":
        logger.warning("EMAIL_PROVIDER=console; mail will be logged, not delivered")
        return ConsoleMailer(renderer, **platform)
    raise ConfigurationError(f"invalid email provider {provider!r}")
