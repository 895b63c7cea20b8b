from __future__ import annotations

import smtplib

import pytest

from auth_service.config import ConfigurationError, Settings
from auth_service.domain.contracts import Recipient
from auth_service.notifications import mailer as mailer_module
from auth_service.notifications.mailer import (
    ConsoleMailer,
    Mailer,
    SmtpMailer,
    TemplateRenderer,
    build_mailer,
)

RECIPIENT = Recipient(name="Ada", address="ada@example.com")


class RecordingSMTP:
    instances: list["RecordingSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.logged_in = None
        self.messages = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, message):
        self.messages.append(message)


class RefusingSMTP(RecordingSMTP):
    def send_message(self, message):
        raise smtplib.SMTPRecipientsRefused({RECIPIENT.address: (550, b"no such user")})


def _smtp_mailer() -> SmtpMailer:
    return SmtpMailer(
        TemplateRenderer(),
        host="smtp.example.com",
        port=587,
        username="mailer",
        password="secret",
        platform_name="Acme",
        platform_support="support@example.com",
    )


def test_renderer_fills_layout_and_code():
    html = TemplateRenderer().render(
        "activate_account",
        {"name": "Ada Lovelace", "otp_code": "4821", "platform": "Acme", "platform_mail": "s@example.com", "current_year": 2024},
    )

    assert "4821" in html
    assert "Ada Lovelace" in html
    assert "Acme" in html


def test_renderer_prefers_override_directory(tmp_path):
    (tmp_path / "resend_otp.html").write_text("custom {{ otp_code }}")

    html = TemplateRenderer(str(tmp_path)).render("resend_otp", {"otp_code": "9999"})

    assert html == "custom 9999"


def test_renderer_escapes_context():
    html = TemplateRenderer().render(
        "reset_password_confirmation",
        {"name": "<script>", "platform": "Acme", "platform_mail": "s@example.com", "current_year": 2024},
    )

    assert "<script>" not in html


def test_smtp_mailer_sends_rendered_message(monkeypatch):
    RecordingSMTP.instances.clear()
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", RecordingSMTP)

    sent = _smtp_mailer().send(RECIPIENT, "OTP Request", "resend_otp", {"name": "Ada Lovelace", "otp_code": "4821"})

    assert sent is True
    server = RecordingSMTP.instances[-1]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.logged_in == ("mailer", "secret")
    message = server.messages[-1]
    assert message["Subject"] == "OTP Request"
    assert "ada@example.com" in message["To"]
    assert "4821" in message.get_payload()[0].get_payload(decode=True).decode()


def test_smtp_mailer_reports_refused_delivery(monkeypatch):
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", RefusingSMTP)

    sent = _smtp_mailer().send(RECIPIENT, "OTP Request", "resend_otp", {"name": "Ada", "otp_code": "1"})

    assert sent is False


def test_smtp_mailer_reports_unreachable_relay(monkeypatch):
    def unreachable(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(mailer_module.smtplib, "SMTP", unreachable)

    assert _smtp_mailer().send(RECIPIENT, "OTP Request", "resend_otp", {"name": "Ada", "otp_code": "1"}) is False


def test_console_mailer_accepts_everything():
    mailer = ConsoleMailer(TemplateRenderer(), platform_name="Acme", platform_support="support@example.com")

    assert mailer.send(RECIPIENT, "Activate Account", "activate_account", {"name": "Ada", "otp_code": "1"})


def test_build_mailer_selects_provider():
    assert isinstance(build_mailer(Settings(email_provider="console")), ConsoleMailer)
    assert isinstance(build_mailer(Settings(email_provider="google")), SmtpMailer)
    assert isinstance(build_mailer(Settings(email_provider="smtp", smtp_host="smtp.example.com")), SmtpMailer)


def test_build_mailer_requires_smtp_host():
    with pytest.raises(ConfigurationError, match="SMTP_HOST"):
        build_mailer(Settings(email_provider="smtp", smtp_host=""))


def test_build_mailer_rejects_unknown_provider():
    with pytest.raises(ConfigurationError, match="invalid email provider"):
        build_mailer(Settings(email_provider="carrier-pigeon"))


def test_base_mailer_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Mailer(TemplateRenderer(), platform_name="Acme", platform_support="support@example.com")
